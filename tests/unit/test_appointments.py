"""
Unit tests for appointment booking and status transitions.
"""

import pytest
from pydantic import ValidationError

from edupath.appointments import (
    AppointmentForm, TransitionError, create_appointment, change_status, filter_appointments,
)


def _form(**overrides):
    data = {"name": "Priya Sharma", "email": "priya@example.com", "phoneNumber": "+9779812345678",
            "preferredContact": "whatsapp", "subject": "Visa consultation",
            "requestedDate": "2026-11-02T10:30:00"}
    data.update(overrides)
    return AppointmentForm.model_validate(data)


class TestAppointmentForm:

    def test_valid_form(self):
        form = _form(message="Need help with GTE")
        assert form.preferred_contact == "whatsapp"

    def test_zulu_timestamp_accepted(self):
        assert _form(requestedDate="2026-11-02T10:30:00.000Z").requested_date.endswith("Z")

    def test_bad_date_rejected(self):
        with pytest.raises(ValidationError):
            _form(requestedDate="next tuesday")

    def test_unknown_contact_method_rejected(self):
        with pytest.raises(ValidationError):
            _form(preferredContact="fax")


class TestStatusTransitions:

    def _appt(self, status="pending"):
        db = {"appointments": []}
        appt = create_appointment(_form(), {"id": 7}, db)
        appt["status"] = status
        return appt

    def test_new_appointment_is_pending(self):
        db = {"appointments": []}
        appt = create_appointment(_form(), {"id": 7}, db)
        assert appt["status"] == "pending"
        assert appt["userId"] == 7
        assert appt["id"] == 1
        assert db["appointments"] == [appt]

    @pytest.mark.parametrize("start,target", [
        ("pending", "confirmed"), ("pending", "cancelled"),
        ("confirmed", "completed"), ("confirmed", "cancelled"),
    ])
    def test_allowed(self, start, target):
        assert change_status(self._appt(start), target)["status"] == target

    @pytest.mark.parametrize("start,target", [
        ("pending", "completed"), ("completed", "cancelled"),
        ("cancelled", "confirmed"), ("pending", "pending"),
    ])
    def test_rejected(self, start, target):
        appt = self._appt(start)
        with pytest.raises(TransitionError):
            change_status(appt, target)
        assert appt["status"] == start

    def test_unknown_status(self):
        with pytest.raises(TransitionError):
            change_status(self._appt(), "archived")


class TestFilterAppointments:

    def test_search_and_status(self):
        appts = [
            {"id": 1, "userId": 1, "name": "Anna", "email": "a@x.com", "subject": "Visa",
             "status": "pending", "createdAt": "2026-01-01"},
            {"id": 2, "userId": 2, "name": "Ben", "email": "b@x.com", "subject": "Scholarship",
             "status": "confirmed", "createdAt": "2026-01-02"},
            {"id": 3, "userId": 2, "name": "Ben", "email": "b@x.com", "subject": "Visa",
             "status": "pending", "createdAt": "2026-01-03"},
        ]
        users = {1: {"username": "anna_k"}, 2: {"username": "benj"}}
        assert [a["id"] for a in filter_appointments(appts, users, search="visa")] == [3, 1]
        assert [a["id"] for a in filter_appointments(appts, users, search="BENJ")] == [3, 2]
        assert [a["id"] for a in filter_appointments(appts, users, status="pending")] == [3, 1]
        assert [a["id"] for a in filter_appointments(appts, users, search="ben", status="confirmed")] == [2]
        assert len(filter_appointments(appts, status="all")) == 3
