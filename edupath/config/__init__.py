"""
EduPath Consult — Configuration & Constants
All environment variables, feature flags, limits and enumerations.
"""
import os
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("EDUPATH_DATA_DIR", BASE_DIR / "data"))
UPLOAD_DIR = DATA_DIR / "uploads"
FRONTEND_DIR = BASE_DIR / "frontend"

for d in (DATA_DIR, UPLOAD_DIR):
    d.mkdir(parents=True, exist_ok=True)

DB_PATH = DATA_DIR / "db.json"
DB_LOCK_PATH = DATA_DIR / "db.lock"

# ============================================================
# FEATURE FLAGS
# ============================================================
PERSIST_DATA = os.environ.get("PERSIST_DATA", "true").lower() == "true"
SEED_ADMIN = os.environ.get("SEED_ADMIN", "false").lower() == "true"
REGISTRATION_OPEN = os.environ.get("REGISTRATION_OPEN", "true").lower() == "true"

# ============================================================
# AUTH
# ============================================================
JWT_SECRET = os.environ.get("JWT_SECRET", os.urandom(32).hex())
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.environ.get("JWT_EXPIRY_HOURS", str(24 * 30)))
SESSION_COOKIE = "session"
SECURE_COOKIES = os.environ.get("SECURE_COOKIES", "false").lower() == "true"
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@edupath.local")

ROLES = ("user", "admin")
USER_STATUSES = ("active", "suspended")

# ============================================================
# QUOTAS
# ============================================================
DEFAULT_MAX_ANALYSES = int(os.environ.get("DEFAULT_MAX_ANALYSES", "3"))

# ============================================================
# LLM
# ============================================================
USE_REAL_API = bool(os.environ.get("ANTHROPIC_API_KEY"))
ANALYSIS_MODEL = os.environ.get("ANALYSIS_MODEL", "claude-sonnet-4-20250514")
MAX_INPUT_TOKENS = 8000
MAX_OUTPUT_TOKENS = 4000
CHARS_PER_TOKEN = 4

# ============================================================
# ANALYSIS CACHE
# ============================================================
ANALYSIS_CACHE_SIZE = int(os.environ.get("ANALYSIS_CACHE_SIZE", "100"))
ANALYSIS_CACHE_TTL_MINUTES = int(os.environ.get("ANALYSIS_CACHE_TTL_MINUTES", "60"))

# ============================================================
# UPLOADS
# ============================================================
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png", ".txt"}
MEDIA_TYPES = {".pdf": "application/pdf", ".jpg": "image/jpeg", ".jpeg": "image/jpeg",
               ".png": "image/png", ".txt": "text/plain"}

# ============================================================
# ENUMERATIONS
# ============================================================
ENROLLMENT_DOCUMENT_TYPES = ("coe", "offer_letter", "other")

APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")
APPOINTMENT_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}
CONTACT_METHODS = ("phone", "whatsapp", "viber")

SCHOLARSHIP_STATUSES = ("active", "inactive", "draft")
PROVIDER_TYPES = ("government", "university", "private", "other")
FUNDING_TYPES = ("full", "partial", "tuition-only", "stipend", "other")
DIFFICULTY_LEVELS = ("easy", "medium", "hard", "very-hard")
SCHOLARSHIP_PAGE_SIZE = 20
SCHOLARSHIP_MAX_PAGE_SIZE = 100

WATCHLIST_PRIORITIES = ("low", "medium", "high")
APPLICATION_STATUSES = ("not_started", "in_progress", "submitted", "completed")

FEEDBACK_ANALYSIS_TYPES = ("visa", "enrollment")
FEEDBACK_MAX_CHARS = 2000

UPDATE_TYPES = ("general", "individual")
UPDATE_PRIORITIES = ("low", "normal", "high", "urgent")
UPDATE_AUDIENCES = ("all", "students")

# Score ranges for language and standardized tests
TEST_SCORE_RANGES = {
    "IELTS": (0, 9),
    "TOEFL": (0, 120),
    "PTE": (10, 90),
    "Duolingo": (10, 160),
    "Cambridge": (80, 230),
    "GRE": (260, 340),
    "GMAT": (200, 800),
    "SAT": (400, 1600),
    "ACT": (1, 36),
}

# Fields a profile needs before it counts as complete
REQUIRED_PROFILE_FIELDS = [
    "firstName", "lastName", "dateOfBirth", "gender", "email", "phoneNumber",
    "nationality", "city", "country", "highestQualification", "highestInstitution",
    "highestCountry", "highestGpa", "graduationYear", "interestedCourse",
    "fieldOfStudy", "preferredIntake", "budgetRange", "preferredCountries",
    "currentEmploymentStatus",
]

# ============================================================
# VERSION
# ============================================================
VERSION = "1.4.0"
