"""
EduPath Consult — Analysis Feedback
Students rate the visa and enrollment analyses they received; admins review
the ratings and comments.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from edupath.config import FEEDBACK_ANALYSIS_TYPES, FEEDBACK_MAX_CHARS
from edupath.db import next_id
from edupath.profiles import CamelModel

# analysis type -> store collection
ANALYSIS_COLLECTIONS = {"visa": "analyses", "enrollment": "enrollment_analyses"}


class FeedbackForm(CamelModel):
    is_accurate: Optional[bool] = None
    is_helpful: Optional[bool] = None
    accuracy_rating: Optional[int] = Field(None, ge=1, le=5)
    helpfulness_rating: Optional[int] = Field(None, ge=1, le=5)
    clarity_rating: Optional[int] = Field(None, ge=1, le=5)
    overall_rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=FEEDBACK_MAX_CHARS)
    improvement_suggestions: Optional[str] = Field(None, max_length=FEEDBACK_MAX_CHARS)
    feedback_categories: List[str] = []

    @model_validator(mode="after")
    def not_empty(self):
        values = self.model_dump(exclude={"feedback_categories"})
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values.values()) \
                and not self.feedback_categories:
            raise ValueError("Feedback cannot be empty")
        return self


def find_feedback(db: dict, user_id: int, analysis_type: str, analysis_id: int):
    for f in db["feedback"]:
        if (f.get("userId") == user_id and f.get("analysisType") == analysis_type
                and f.get("analysisId") == analysis_id):
            return f
    return None


def create_feedback(form: FeedbackForm, user: dict, analysis_type: str, analysis_id: int, db: dict) -> dict:
    if analysis_type not in FEEDBACK_ANALYSIS_TYPES:
        raise ValueError(f"Unknown analysis type '{analysis_type}'")
    now = datetime.now().isoformat()
    rec = {"id": next_id(db, "feedback"), "userId": user["id"], "analysisType": analysis_type,
           "analysisId": analysis_id, **form.model_dump(by_alias=True), "createdAt": now, "updatedAt": now}
    db["feedback"].append(rec)
    return rec


def update_feedback(rec: dict, form: FeedbackForm) -> list:
    """Merge only the fields the caller sent. Returns the changed keys."""
    data = form.model_dump(by_alias=True, exclude_unset=True)
    changed = [k for k, v in data.items() if rec.get(k) != v]
    rec.update(data)
    rec["updatedAt"] = datetime.now().isoformat()
    return changed


def remove_feedback_for(db: dict, analysis_type: str, analysis_ids) -> int:
    """Drop feedback attached to deleted analyses. Returns the number removed."""
    ids = set(analysis_ids)
    before = len(db["feedback"])
    db["feedback"] = [f for f in db["feedback"]
                      if not (f.get("analysisType") == analysis_type and f.get("analysisId") in ids)]
    return before - len(db["feedback"])


def admin_feedback_list(db: dict, search: str = None, analysis_type: str = None) -> list:
    """Feedback joined with its author and analysis, newest first.
    Search covers username, email, filename and the comment text."""
    users = {u["id"]: u for u in db["users"]}
    out = []
    for f in db["feedback"]:
        if analysis_type and analysis_type != "all" and f.get("analysisType") != analysis_type:
            continue
        owner = users.get(f.get("userId"), {})
        coll = ANALYSIS_COLLECTIONS.get(f.get("analysisType"), "analyses")
        analysis = next((a for a in db[coll] if a.get("id") == f.get("analysisId")), {})
        item = {**f,
                "user": {"username": owner.get("username"), "email": owner.get("email")},
                "analysis": {"filename": analysis.get("filename"), "documentType": analysis.get("documentType")}}
        if search and search.strip():
            q = search.strip().lower()
            fields = (owner.get("username"), owner.get("email"), analysis.get("filename"), f.get("feedback"))
            if not any(q in (v or "").lower() for v in fields):
                continue
        out.append(item)
    return sorted(out, key=lambda f: f.get("createdAt", ""), reverse=True)


def feedback_stats(records: list) -> dict:
    rated = [f["overallRating"] for f in records if f.get("overallRating")]
    return {
        "total": len(records),
        "averageRating": round(sum(rated) / len(rated), 1) if rated else 0.0,
        "withComments": sum(1 for f in records if (f.get("feedback") or "").strip()),
        "uniqueUsers": len({f.get("userId") for f in records}),
        "helpful": sum(1 for f in records if f.get("isHelpful") is True),
        "notHelpful": sum(1 for f in records if f.get("isHelpful") is False),
    }
