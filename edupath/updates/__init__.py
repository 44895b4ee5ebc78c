"""
EduPath Consult — Student Updates

Announcements the consultancy publishes to students: general news for an
audience, or individual notices for named users. Each student's reads and
call-to-action clicks are tracked in update_views, which drives the unread
count.

Visibility rules:
  - inactive or expired updates are hidden from students
  - general updates go to their audience ("all", or "students" = role user)
  - individual updates go only to the listed targetUserIds
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from edupath.config import UPDATE_TYPES, UPDATE_PRIORITIES, UPDATE_AUDIENCES
from edupath.db import next_id
from edupath.profiles import CamelModel

PRIORITY_ORDER = {p: i for i, p in enumerate(reversed(UPDATE_PRIORITIES))}


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


# ============================================================
# SCHEMA
# ============================================================
class UpdateForm(CamelModel):
    title: str = Field(..., min_length=2, max_length=200)
    content: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1, max_length=500)
    image_url: Optional[str] = None
    type: Literal[UPDATE_TYPES] = "general"
    priority: Literal[UPDATE_PRIORITIES] = "normal"
    target_audience: Literal[UPDATE_AUDIENCES] = "all"
    target_user_ids: List[int] = []
    call_to_action: Optional[str] = Field(None, max_length=80)
    external_link: Optional[str] = None
    expires_at: Optional[str] = None
    is_active: bool = True

    @field_validator("expires_at")
    @classmethod
    def iso_datetime(cls, v):
        if v in (None, ""):
            return None
        try:
            _parse_iso(v)
        except ValueError:
            raise ValueError("Expiry must be an ISO date/time")
        return v

    @model_validator(mode="after")
    def individual_needs_targets(self):
        if self.type == "individual" and not self.target_user_ids:
            raise ValueError("Individual updates need at least one target user")
        return self


class UpdateEdit(UpdateForm):
    """Same fields as UpdateForm, all optional."""
    title: Optional[str] = Field(None, min_length=2, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    summary: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[Literal[UPDATE_TYPES]] = None
    priority: Optional[Literal[UPDATE_PRIORITIES]] = None
    target_audience: Optional[Literal[UPDATE_AUDIENCES]] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def individual_needs_targets(self):
        # checked against the merged record in edit_update
        return self


# ============================================================
# RECORDS
# ============================================================
def create_update(form: UpdateForm, db: dict, created_by: str) -> dict:
    now = datetime.now().isoformat()
    rec = {"id": next_id(db, "updates"), **form.model_dump(by_alias=True),
           "createdBy": created_by, "publishedAt": now, "updatedAt": now}
    db["updates"].append(rec)
    return rec


def edit_update(rec: dict, edit: UpdateEdit) -> list:
    """Apply a partial edit. An individual update must keep at least one target."""
    data = edit.model_dump(by_alias=True, exclude_unset=True)
    kind = data.get("type") or rec.get("type")
    targets = data.get("targetUserIds", rec.get("targetUserIds") or [])
    if kind == "individual" and not targets:
        raise ValueError("Individual updates need at least one target user")
    changed = [k for k, v in data.items() if rec.get(k) != v]
    rec.update(data)
    rec["updatedAt"] = datetime.now().isoformat()
    return changed


def remove_update(db: dict, update_id: int) -> bool:
    before = len(db["updates"])
    db["updates"] = [u for u in db["updates"] if u.get("id") != update_id]
    if len(db["updates"]) == before:
        return False
    db["update_views"] = [v for v in db["update_views"] if v.get("updateId") != update_id]
    return True


# ============================================================
# VISIBILITY & READ TRACKING
# ============================================================
def is_expired(update: dict, now: datetime = None) -> bool:
    expires = update.get("expiresAt")
    if not expires:
        return False
    return _parse_iso(expires) < (now or datetime.now())


def is_visible_to(update: dict, user: dict, now: datetime = None) -> bool:
    if not update.get("isActive", True) or is_expired(update, now):
        return False
    if update.get("type") == "individual":
        return user.get("id") in (update.get("targetUserIds") or [])
    audience = update.get("targetAudience", "all")
    return audience == "all" or (audience == "students" and user.get("role") == "user")


def _view_for(db: dict, update_id: int, user_id: int):
    for v in db["update_views"]:
        if v.get("updateId") == update_id and v.get("userId") == user_id:
            return v
    return None


def updates_for_user(db: dict, user: dict, now: datetime = None) -> list:
    """Visible updates with the user's read state, most urgent then newest first."""
    out = []
    for u in db["updates"]:
        if not is_visible_to(u, user, now):
            continue
        view = _view_for(db, u["id"], user["id"])
        out.append({**u, "isViewed": view is not None,
                    "viewedAt": view.get("viewedAt") if view else None,
                    "actionTaken": bool(view and view.get("actionTaken"))})
    out.sort(key=lambda u: u.get("publishedAt", ""), reverse=True)
    out.sort(key=lambda u: PRIORITY_ORDER.get(u.get("priority"), len(PRIORITY_ORDER)))
    return out


def unread_count(db: dict, user: dict, now: datetime = None) -> int:
    return sum(1 for u in updates_for_user(db, user, now) if not u["isViewed"])


def mark_viewed(db: dict, update_id: int, user_id: int, action: bool = False) -> dict:
    """Record a read (and optionally a call-to-action click). Idempotent."""
    now = datetime.now().isoformat()
    view = _view_for(db, update_id, user_id)
    if view is None:
        view = {"id": next_id(db, "update_views"), "updateId": update_id, "userId": user_id,
                "viewedAt": now, "actionTaken": False, "actionAt": None}
        db["update_views"].append(view)
    if action and not view.get("actionTaken"):
        view["actionTaken"] = True
        view["actionAt"] = now
    return view


def view_counts(db: dict) -> dict:
    """update id -> {views, actions}."""
    counts = {}
    for v in db["update_views"]:
        c = counts.setdefault(v.get("updateId"), {"views": 0, "actions": 0})
        c["views"] += 1
        if v.get("actionTaken"):
            c["actions"] += 1
    return counts
