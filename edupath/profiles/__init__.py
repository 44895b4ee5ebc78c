"""
EduPath Consult — Registration & Student Profiles

Registration is collected over four client-side steps (account, personal,
preferences, consent) and submitted once. Each step can be validated on its
own so the form can stop the user early.

After registration the student fills in the longer profile in sections
(personal, academic, study preferences, employment, language tests, lead
status). Sections are optional individually; a profile counts as complete
once every field in REQUIRED_PROFILE_FIELDS holds a value.

Derived values:
  - currentAcademicGap: years since graduation, recomputed whenever the
    graduation year changes and the client did not send a gap of its own
  - completion percentage + human-readable missing field labels
"""

import re
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from edupath.config import REQUIRED_PROFILE_FIELDS, TEST_SCORE_RANGES
from edupath.db import next_id

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case (python) field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# REGISTRATION
# ============================================================
class RegistrationForm(CamelModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., min_length=6)
    email: EmailStr
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    study_destination: str = Field(..., min_length=1)
    start_date: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    counselling_mode: Literal["online", "in-person", "phone"]
    funding_source: str = Field(..., min_length=1)
    study_level: str = Field(..., min_length=1)
    agree_to_terms: bool
    allow_contact: bool = False
    receive_updates: bool = False

    @field_validator("username")
    @classmethod
    def username_charset(cls, v):
        if not re.fullmatch(r"[A-Za-z0-9_.-]+", v):
            raise ValueError("Username may only contain letters, digits, '.', '_' and '-'")
        return v

    @field_validator("agree_to_terms")
    @classmethod
    def terms_accepted(cls, v):
        if v is not True:
            raise ValueError("You must agree to the terms and privacy policy")
        return v

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginForm(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


REGISTRATION_STEPS = {
    "account": ["username", "email", "password", "confirmPassword"],
    "personal": ["firstName", "lastName", "phoneNumber", "city", "country"],
    "preferences": ["studyDestination", "startDate", "counsellingMode", "fundingSource", "studyLevel"],
    "consent": ["agreeToTerms", "allowContact", "receiveUpdates"],
}


def _error_field(err: dict) -> str:
    loc = err.get("loc") or ()
    return str(loc[0]) if loc else ""


def format_errors(exc: ValidationError) -> list:
    """Flatten a pydantic error into [{field, message}] with camelCase names."""
    out = []
    for err in exc.errors():
        field = _error_field(err)
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        if not field and "Passwords" in msg:
            field = "confirmPassword"
        out.append({"field": to_camel(field) if "_" in field else field, "message": msg})
    return out


def validate_registration_step(step: str, data: dict) -> list:
    """Validate only the fields that belong to one registration step.
    Returns a list of {field, message} errors (empty when the step is valid)."""
    if step not in REGISTRATION_STEPS:
        raise ValueError(f"Unknown registration step: {step}")
    fields = set(REGISTRATION_STEPS[step])
    try:
        RegistrationForm.model_validate(data)
        return []
    except ValidationError as e:
        errors = format_errors(e)
    step_errors = [err for err in errors if err["field"] in fields]
    # Missing fields from later steps are expected at this point, which also
    # keeps the model-level password check from running
    if step == "account" and "password" in data and "confirmPassword" in data \
            and data["password"] != data["confirmPassword"] \
            and not any(err["field"] == "confirmPassword" for err in step_errors):
        step_errors.append({"field": "confirmPassword", "message": "Passwords don't match"})
    return step_errors


# ============================================================
# PROFILE SECTIONS
# ============================================================
class EducationEntry(CamelModel):
    level: str = Field(..., min_length=1)
    institution: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    grade: str = Field(..., min_length=1)
    year_of_completion: int

    @field_validator("year_of_completion")
    @classmethod
    def plausible_year(cls, v):
        if v < 1950 or v > date.today().year + 10:
            raise ValueError("Year of completion is out of range")
        return v


class ScoreEntry(CamelModel):
    test_type: str
    test_date: str = Field(..., pattern=DATE_PATTERN)
    overall_score: float = Field(..., ge=0)
    subscores: Optional[dict] = None

    @model_validator(mode="after")
    def score_in_range(self):
        if not validate_test_score(self.test_type, self.overall_score):
            raise ValueError(f"Invalid {self.test_type} score: {self.overall_score}")
        return self


class ProfileUpdate(CamelModel):
    """Every profile field; all optional so sections can be saved separately."""
    # personal
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    date_of_birth: Optional[str] = Field(None, pattern=DATE_PATTERN)
    gender: Optional[Literal["Male", "Female", "Non-binary", "Prefer not to say", "Other"]] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    secondary_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    nationality: Optional[str] = Field(None, min_length=1)
    passport_number: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1, max_length=50)
    country: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, max_length=150)

    # academic
    highest_qualification: Optional[Literal["High School", "Bachelor", "Master", "PhD"]] = None
    highest_institution: Optional[str] = Field(None, min_length=1)
    highest_country: Optional[str] = Field(None, min_length=1)
    highest_gpa: Optional[str] = Field(None, min_length=1)
    graduation_year: Optional[int] = None
    current_academic_gap: Optional[int] = Field(None, ge=0, le=20)
    education_history: Optional[List[EducationEntry]] = None

    # study preferences
    interested_course: Optional[str] = Field(None, min_length=1)
    field_of_study: Optional[str] = Field(None, min_length=1)
    preferred_intake: Optional[str] = Field(None, min_length=1)
    budget_range: Optional[Literal["<10K", "10-20K", "20-30K", "30K+"]] = None
    preferred_countries: Optional[List[str]] = None
    interested_services: Optional[List[str]] = None
    part_time_interest: Optional[bool] = None
    accommodation_required: Optional[bool] = None
    has_dependents: Optional[bool] = None

    # employment
    current_employment_status: Optional[Literal["Employed", "Self-employed", "Studying", "Unemployed"]] = None
    work_experience_years: Optional[int] = Field(None, ge=0, le=50)
    job_title: Optional[str] = None
    organization_name: Optional[str] = None
    field_of_work: Optional[str] = None
    gap_reason_if_any: Optional[str] = None

    # language
    english_proficiency_tests: Optional[List[ScoreEntry]] = None
    standardized_tests: Optional[List[ScoreEntry]] = None

    # lead status
    lead_type: Optional[Literal["Prospect", "Applicant", "Enrolled"]] = None
    application_status: Optional[Literal["New", "Contacted", "In Progress", "Applied",
                                         "Offer Received", "Rejected", "Enrolled"]] = None

    @field_validator("graduation_year", mode="before")
    @classmethod
    def parse_graduation_year(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            if not re.fullmatch(r"\d{4}", v):
                raise ValueError("Graduation year must be a 4-digit year")
            return int(v)
        return v

    @field_validator("graduation_year")
    @classmethod
    def graduation_year_range(cls, v):
        if v is not None and (v < 1950 or v > date.today().year + 10):
            raise ValueError("Invalid graduation year")
        return v

    @field_validator("current_academic_gap", mode="before")
    @classmethod
    def blank_gap(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return int(v) if v.isdigit() else None
        return v

    @field_validator("preferred_countries")
    @classmethod
    def at_least_one_country(cls, v):
        if v is not None and not [c for c in v if c and c.strip()]:
            raise ValueError("At least one preferred country is required")
        return v


# ============================================================
# DERIVED VALUES
# ============================================================
def academic_gap(graduation_year, today: date = None):
    """Years since graduation, or None for a future / unparseable year."""
    try:
        year = int(graduation_year)
    except (TypeError, ValueError):
        return None
    current = (today or date.today()).year
    if year > current:
        return None
    return current - year


def validate_test_score(test_type: str, score: float) -> bool:
    bounds = TEST_SCORE_RANGES.get(test_type)
    if not bounds:
        return False
    return bounds[0] <= score <= bounds[1]


def field_label(field: str) -> str:
    """camelCase field name → 'Title Case' label."""
    spaced = re.sub(r"([A-Z])", r" \1", field)
    return spaced[:1].upper() + spaced[1:]


def _is_blank(value) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return value is None or value == ""


def profile_completion(profile: dict) -> dict:
    missing = [f for f in REQUIRED_PROFILE_FIELDS if _is_blank(profile.get(f))]
    total = len(REQUIRED_PROFILE_FIELDS)
    return {
        "isComplete": not missing,
        "completionPercentage": round((total - len(missing)) / total * 100),
        "missingFields": [field_label(f) for f in missing],
    }


# ============================================================
# USER RECORDS
# ============================================================
def create_user_record(form: RegistrationForm, password_hash: str, db: dict,
                       max_analyses: int, role: str = "user") -> dict:
    """Build a new user record from a validated registration form."""
    data = form.model_dump(by_alias=True, exclude={"password", "confirm_password"})
    return {
        "id": next_id(db, "users"),
        **data,
        "password": password_hash,
        "role": role,
        "status": "active",
        "analysisCount": 0,
        "maxAnalyses": max_analyses,
        "createdAt": datetime.now().isoformat(),
    }


def apply_profile_update(user: dict, update: ProfileUpdate) -> list:
    """Merge a validated profile update into the user record in place.
    Returns the list of changed field names."""
    data = update.model_dump(by_alias=True, exclude_unset=True)
    if "graduationYear" in data and "currentAcademicGap" not in data:
        gap = academic_gap(data["graduationYear"])
        if gap is not None:
            data["currentAcademicGap"] = gap
    changed = [k for k, v in data.items() if user.get(k) != v]
    user.update(data)
    user["profileUpdatedAt"] = datetime.now().isoformat()
    return changed


def safe_user(user: dict) -> dict:
    """User record without the password hash."""
    return {k: v for k, v in user.items() if k != "password"}


def filter_users(users: list, search: str = None, role: str = None, status: str = None) -> list:
    """Admin list filter. search matches username, email, first or last name."""
    out = list(users)
    if search and search.strip():
        q = search.strip().lower()
        out = [u for u in out if any(q in (u.get(k) or "").lower()
                                     for k in ("username", "email", "firstName", "lastName"))]
    if role and role != "all":
        out = [u for u in out if u.get("role") == role]
    if status and status != "all":
        out = [u for u in out if u.get("status", "active") == status]
    return out
