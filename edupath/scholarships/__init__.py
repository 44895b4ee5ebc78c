"""
EduPath Consult — Scholarship Catalogue
Admin-managed scholarship records, public search over active ones.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from edupath.config import (
    SCHOLARSHIP_PAGE_SIZE, SCHOLARSHIP_MAX_PAGE_SIZE, SCHOLARSHIP_STATUSES,
    PROVIDER_TYPES, FUNDING_TYPES, DIFFICULTY_LEVELS,
)
from edupath.db import next_id, _n
from edupath.profiles import CamelModel, DATE_PATTERN


# ============================================================
# SCHEMA
# ============================================================
class ScholarshipForm(CamelModel):
    name: str = Field(..., min_length=2, max_length=200)
    provider_name: str = Field(..., min_length=2)
    provider_type: Literal[PROVIDER_TYPES]
    provider_country: str = Field(..., min_length=2)
    description: str = ""
    study_levels: List[str] = []
    field_categories: List[str] = []
    funding_type: Literal[FUNDING_TYPES]
    total_value_min: Optional[float] = Field(None, ge=0)
    total_value_max: Optional[float] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    application_deadline: Optional[str] = Field(None, pattern=DATE_PATTERN)
    eligibility_criteria: List[str] = []
    required_documents: List[str] = []
    renewable: bool = False
    difficulty_level: Literal[DIFFICULTY_LEVELS] = "medium"
    scholarship_url: Optional[str] = None
    status: Literal[SCHOLARSHIP_STATUSES] = "active"

    @model_validator(mode="after")
    def value_range(self):
        if (self.total_value_min is not None and self.total_value_max is not None
                and self.total_value_min > self.total_value_max):
            raise ValueError("Minimum value cannot exceed maximum value")
        return self


class ScholarshipUpdate(ScholarshipForm):
    """Same fields as ScholarshipForm, all optional."""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    provider_name: Optional[str] = Field(None, min_length=2)
    provider_type: Optional[Literal[PROVIDER_TYPES]] = None
    provider_country: Optional[str] = Field(None, min_length=2)
    funding_type: Optional[Literal[FUNDING_TYPES]] = None


# ============================================================
# RECORDS
# ============================================================
def create_scholarship(form: ScholarshipForm, db: dict, created_by: str) -> dict:
    now = datetime.now().isoformat()
    rec = {"id": next_id(db, "scholarships"), **form.model_dump(by_alias=True),
           "createdBy": created_by, "createdAt": now, "updatedAt": now}
    db["scholarships"].append(rec)
    return rec


def update_scholarship(rec: dict, update: ScholarshipUpdate) -> list:
    """Apply a partial update. The merged record must keep min <= max."""
    data = update.model_dump(by_alias=True, exclude_unset=True)
    lo = data.get("totalValueMin", rec.get("totalValueMin"))
    hi = data.get("totalValueMax", rec.get("totalValueMax"))
    if lo is not None and hi is not None and lo > hi:
        raise ValueError("Minimum value cannot exceed maximum value")
    changed = [k for k, v in data.items() if rec.get(k) != v]
    rec.update(data)
    rec["updatedAt"] = datetime.now().isoformat()
    return changed


# ============================================================
# SEARCH
# ============================================================
def _contains(haystack, needle: str) -> bool:
    return needle in (haystack or "").lower()


def _clamp_page(limit, offset) -> tuple:
    try:
        limit = int(limit) if limit is not None else SCHOLARSHIP_PAGE_SIZE
    except (TypeError, ValueError):
        limit = SCHOLARSHIP_PAGE_SIZE
    try:
        offset = int(offset) if offset is not None else 0
    except (TypeError, ValueError):
        offset = 0
    return max(1, min(limit, SCHOLARSHIP_MAX_PAGE_SIZE)), max(0, offset)


def search_scholarships(records: list, search: str = None, status: str = None,
                        provider_type: str = None, country: str = None, funding_type: str = None,
                        difficulty: str = None, study_level: str = None, field_category: str = None,
                        renewable: bool = None, min_amount: float = None, max_amount: float = None,
                        limit=None, offset=None) -> dict:
    """Filter, sort newest first and page. "all" or empty means no filter."""
    def wanted(v):
        return v not in (None, "", "all")

    out = list(records)
    if wanted(search):
        q = search.strip().lower()
        out = [s for s in out if _contains(s.get("name"), q) or _contains(s.get("providerName"), q)
               or _contains(s.get("description"), q)]
    if wanted(status):
        out = [s for s in out if s.get("status") == status]
    if wanted(provider_type):
        out = [s for s in out if s.get("providerType") == provider_type]
    if wanted(country):
        out = [s for s in out if (s.get("providerCountry") or "").lower() == country.lower()]
    if wanted(funding_type):
        out = [s for s in out if s.get("fundingType") == funding_type]
    if wanted(difficulty):
        out = [s for s in out if s.get("difficultyLevel") == difficulty]
    if wanted(study_level):
        out = [s for s in out if study_level in (s.get("studyLevels") or [])]
    if wanted(field_category):
        out = [s for s in out if field_category in (s.get("fieldCategories") or [])]
    if renewable is not None:
        out = [s for s in out if bool(s.get("renewable")) == renewable]
    if min_amount is not None:
        out = [s for s in out if s.get("totalValueMin") is not None and s["totalValueMin"] >= min_amount]
    if max_amount is not None:
        out = [s for s in out if s.get("totalValueMax") is not None and s["totalValueMax"] <= max_amount]

    out.sort(key=lambda s: s.get("createdAt", ""), reverse=True)
    limit, offset = _clamp_page(limit, offset)
    return {"scholarships": out[offset:offset + limit], "total": len(out), "limit": limit, "offset": offset}


def filter_options(records: list) -> dict:
    """Distinct values present in the catalogue, for filter dropdowns."""
    def distinct(key):
        return sorted({s.get(key) for s in records if s.get(key)})

    def distinct_list(key):
        return sorted({v for s in records for v in (s.get(key) or []) if v})

    return {
        "providerTypes": distinct("providerType"),
        "countries": distinct("providerCountry"),
        "fundingTypes": distinct("fundingType"),
        "difficultyLevels": distinct("difficultyLevel"),
        "studyLevels": distinct_list("studyLevels"),
        "fieldCategories": distinct_list("fieldCategories"),
    }


def scholarship_stats(records: list) -> dict:
    active = [s for s in records if s.get("status") == "active"]
    by_type = {}
    for s in active:
        by_type[s.get("providerType", "other")] = by_type.get(s.get("providerType", "other"), 0) + 1
    return {
        "total": len(records),
        "active": len(active),
        "countries": len({s.get("providerCountry") for s in active if s.get("providerCountry")}),
        "byProviderType": by_type,
        "totalFundingMax": round(sum(_n(s.get("totalValueMax")) for s in active), 2),
    }
