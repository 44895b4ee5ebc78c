"""
EduPath Consult — Scholarship Watchlist
Students save active scholarships, track their own application progress and
keep notes. One entry per user and scholarship.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from edupath.config import WATCHLIST_PRIORITIES, APPLICATION_STATUSES
from edupath.db import next_id
from edupath.profiles import CamelModel

SCHOLARSHIP_SUMMARY_KEYS = ("name", "providerName", "providerCountry", "fundingType",
                            "totalValueMin", "totalValueMax", "currency", "applicationDeadline", "status")


class WatchlistForm(CamelModel):
    scholarship_id: int = Field(..., gt=0)
    notes: str = Field("", max_length=2000)
    priority_level: Literal[WATCHLIST_PRIORITIES] = "medium"
    application_status: Literal[APPLICATION_STATUSES] = "not_started"


class WatchlistEdit(CamelModel):
    notes: Optional[str] = Field(None, max_length=2000)
    priority_level: Optional[Literal[WATCHLIST_PRIORITIES]] = None
    application_status: Optional[Literal[APPLICATION_STATUSES]] = None


class DuplicateEntryError(ValueError):
    """The scholarship is already on this user's watchlist."""


def find_entry(db: dict, user_id: int, scholarship_id: int):
    for w in db["watchlist"]:
        if w.get("userId") == user_id and w.get("scholarshipId") == scholarship_id:
            return w
    return None


def add_entry(form: WatchlistForm, user: dict, db: dict) -> dict:
    if find_entry(db, user["id"], form.scholarship_id):
        raise DuplicateEntryError("Scholarship already in watchlist")
    now = datetime.now().isoformat()
    rec = {"id": next_id(db, "watchlist"), "userId": user["id"],
           **form.model_dump(by_alias=True), "createdAt": now, "updatedAt": now}
    db["watchlist"].append(rec)
    return rec


def edit_entry(rec: dict, edit: WatchlistEdit) -> list:
    data = edit.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    changed = [k for k, v in data.items() if rec.get(k) != v]
    rec.update(data)
    rec["updatedAt"] = datetime.now().isoformat()
    return changed


def user_watchlist(db: dict, user_id: int) -> list:
    """The user's entries, newest first, each with a short scholarship summary.
    Entries whose scholarship has since been deactivated stay listed."""
    by_id = {s["id"]: s for s in db["scholarships"]}
    out = []
    for w in db["watchlist"]:
        if w.get("userId") != user_id:
            continue
        s = by_id.get(w.get("scholarshipId"), {})
        out.append({**w, "scholarship": {"id": w.get("scholarshipId"),
                                         **{k: s.get(k) for k in SCHOLARSHIP_SUMMARY_KEYS}}})
    return sorted(out, key=lambda w: w.get("createdAt", ""), reverse=True)
