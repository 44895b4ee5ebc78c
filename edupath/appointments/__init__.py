"""
EduPath Consult — Consultation Appointments
Request → pending → confirmed → completed, cancellable until completed.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field, field_validator

from edupath.config import APPOINTMENT_TRANSITIONS, CONTACT_METHODS
from edupath.db import next_id
from edupath.profiles import CamelModel


class TransitionError(ValueError):
    """Requested status change is not allowed from the current status."""


class AppointmentForm(CamelModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone_number: str = Field(..., min_length=5)
    preferred_contact: Literal[CONTACT_METHODS]
    subject: str = Field(..., min_length=2)
    message: Optional[str] = None
    requested_date: str

    @field_validator("requested_date")
    @classmethod
    def iso_datetime(cls, v):
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("Requested date must be an ISO date/time")
        return v


def create_appointment(form: AppointmentForm, user: dict, db: dict) -> dict:
    appt = {"id": next_id(db, "appointments"), "userId": user["id"],
            **form.model_dump(by_alias=True), "status": "pending",
            "createdAt": datetime.now().isoformat()}
    db["appointments"].append(appt)
    return appt


def change_status(appt: dict, new_status: str) -> dict:
    current = appt.get("status", "pending")
    if new_status not in APPOINTMENT_TRANSITIONS:
        raise TransitionError(f"Unknown status '{new_status}'")
    if new_status not in APPOINTMENT_TRANSITIONS.get(current, set()):
        raise TransitionError(f"Cannot move appointment from '{current}' to '{new_status}'")
    appt["status"] = new_status
    appt["updatedAt"] = datetime.now().isoformat()
    return appt


def filter_appointments(appts: list, users_by_id: dict = None, search: str = None, status: str = None) -> list:
    """Search name/email/subject (and the owner's username), filter by status. Newest first."""
    users_by_id = users_by_id or {}
    out = list(appts)
    if search and search.strip():
        q = search.strip().lower()

        def matches(a):
            owner = users_by_id.get(a.get("userId"), {})
            fields = (a.get("name"), a.get("email"), a.get("subject"), owner.get("username"))
            return any(q in (f or "").lower() for f in fields)
        out = [a for a in out if matches(a)]
    if status and status != "all":
        out = [a for a in out if a.get("status") == status]
    return sorted(out, key=lambda a: a.get("createdAt", ""), reverse=True)
