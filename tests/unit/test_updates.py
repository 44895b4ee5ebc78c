"""
Unit tests for student updates: targeting, expiry, ordering and read tracking.
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from edupath.updates import (
    UpdateForm, UpdateEdit, create_update, edit_update, remove_update,
    is_visible_to, updates_for_user, unread_count, mark_viewed, view_counts,
)

STUDENT = {"id": 1, "role": "user"}
ADMIN = {"id": 9, "role": "admin"}
NOW = datetime(2026, 10, 19, 12, 0)


def _db():
    return {"updates": [], "update_views": []}


def _publish(db, **overrides):
    data = {"title": "Intake news", "content": "February intake is open.", "summary": "Feb intake"}
    data.update(overrides)
    return create_update(UpdateForm.model_validate(data), db, created_by="counsellor")


class TestUpdateForm:

    def test_defaults(self):
        form = UpdateForm.model_validate({"title": "Hi", "content": "x", "summary": "y"})
        assert (form.type, form.priority, form.target_audience, form.is_active) == \
            ("general", "normal", "all", True)

    def test_individual_requires_targets(self):
        with pytest.raises(ValidationError):
            UpdateForm.model_validate({"title": "Hi", "content": "x", "summary": "y", "type": "individual"})

    def test_bad_expiry_rejected(self):
        with pytest.raises(ValidationError):
            UpdateForm.model_validate({"title": "Hi", "content": "x", "summary": "y", "expiresAt": "soon"})


class TestVisibility:

    def test_audience_and_individual_targeting(self):
        db = _db()
        everyone = _publish(db)
        students = _publish(db, targetAudience="students")
        personal = _publish(db, type="individual", targetUserIds=[1])

        assert is_visible_to(everyone, ADMIN, NOW)
        assert is_visible_to(students, STUDENT, NOW) and not is_visible_to(students, ADMIN, NOW)
        assert is_visible_to(personal, STUDENT, NOW)
        assert not is_visible_to(personal, {"id": 2, "role": "user"}, NOW)

    def test_inactive_and_expired_hidden(self):
        db = _db()
        assert not is_visible_to(_publish(db, isActive=False), STUDENT, NOW)
        assert not is_visible_to(_publish(db, expiresAt="2026-10-01T00:00:00Z"), STUDENT, NOW)
        assert is_visible_to(_publish(db, expiresAt="2026-12-01T00:00:00"), STUDENT, NOW)


class TestReadTracking:

    def test_most_urgent_first_with_read_state(self):
        db = _db()
        low = _publish(db, title="Low one", priority="low")
        urgent = _publish(db, title="Urgent one", priority="urgent")
        mark_viewed(db, low["id"], STUDENT["id"])

        listed = updates_for_user(db, STUDENT, NOW)
        assert [u["id"] for u in listed] == [urgent["id"], low["id"]]
        assert [u["isViewed"] for u in listed] == [False, True]
        assert unread_count(db, STUDENT, NOW) == 1

    def test_mark_viewed_is_idempotent_and_tracks_action(self):
        db = _db()
        update = _publish(db, callToAction="Book now")
        first = mark_viewed(db, update["id"], 1)
        again = mark_viewed(db, update["id"], 1, action=True)
        assert first is again
        assert again["actionTaken"] is True
        assert len(db["update_views"]) == 1
        assert view_counts(db) == {update["id"]: {"views": 1, "actions": 1}}


class TestEditing:

    def test_edit_keeps_individual_targets(self):
        db = _db()
        rec = _publish(db)
        with pytest.raises(ValueError):
            edit_update(rec, UpdateEdit.model_validate({"type": "individual"}))
        changed = edit_update(rec, UpdateEdit.model_validate({"type": "individual", "targetUserIds": [1]}))
        assert sorted(changed) == ["targetUserIds", "type"]

    def test_remove_drops_views(self):
        db = _db()
        rec = _publish(db)
        mark_viewed(db, rec["id"], 1)
        assert remove_update(db, rec["id"]) is True
        assert db["update_views"] == []
        assert remove_update(db, rec["id"]) is False
