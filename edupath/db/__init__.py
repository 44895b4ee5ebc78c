"""
EduPath Consult — Database Layer
File-based JSON store with PostgreSQL upgrade path.
"""
import os, json, fcntl
from datetime import datetime
from edupath.config import DB_PATH, DB_LOCK_PATH, UPLOAD_DIR, PERSIST_DATA

# ============================================================
# DATABASE URL (PostgreSQL optional, file-based default)
# ============================================================
DATABASE_URL = os.environ.get("DATABASE_URL")

# ============================================================
# EMPTY DB SCHEMA
# ============================================================
EMPTY_DB = {
    "users": [], "appointments": [], "scholarships": [],
    "analyses": [], "enrollment_analyses": [], "activity_log": [],
    "feedback": [], "updates": [], "update_views": [], "watchlist": [],
}

def _fresh_db():
    """Return a fresh empty database."""
    return json.loads(json.dumps(EMPTY_DB))

# ============================================================
# FILE BACKEND
# ============================================================
_db_cache = None

def _file_load():
    global _db_cache
    if DB_PATH.exists():
        try:
            with open(DB_LOCK_PATH, "a+") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_SH)
                try:
                    with open(DB_PATH) as f:
                        _db_cache = json.load(f)
                finally:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)
            # Ensure all collections exist
            for k, v in EMPTY_DB.items():
                if k not in _db_cache:
                    _db_cache[k] = type(v)()
        except (json.JSONDecodeError, IOError) as e:
            print(f"[DB] Could not read {DB_PATH.name}: {e}, starting empty")
            _db_cache = _fresh_db()
    else:
        _db_cache = _fresh_db()
    return _db_cache

def _file_save(db):
    global _db_cache
    _db_cache = db
    if PERSIST_DATA:
        with open(DB_LOCK_PATH, "w") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
            try:
                with open(DB_PATH, "w") as f:
                    json.dump(db, f, indent=2, default=str)
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)

def _file_get():
    if _db_cache is None:
        return _file_load()
    return _db_cache

def _file_reset():
    _file_save(_fresh_db())

# ============================================================
# POSTGRES BACKEND (optional)
# ============================================================
_pg_pool = None

def _pg_connect():
    """Initialize PostgreSQL connection pool. Returns True when connected."""
    global _pg_pool
    if DATABASE_URL and not _pg_pool:
        try:
            from psycopg2.pool import SimpleConnectionPool
            _pg_pool = SimpleConnectionPool(1, 5, DATABASE_URL)
            _pg_init()
            print("[DB] Connected to PostgreSQL")
        except Exception as e:
            print(f"[DB] PostgreSQL connection failed: {e}, falling back to file")
            _pg_pool = None
    return _pg_pool is not None

def _pg_init():
    """Create the single-row state table if it doesn't exist."""
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS app_state (
                id TEXT PRIMARY KEY DEFAULT 'main',
                data JSONB NOT NULL DEFAULT '{}',
                updated_at TIMESTAMP DEFAULT NOW()
            )
        """)
        cur.execute("INSERT INTO app_state (id, data) VALUES ('main', %s) ON CONFLICT DO NOTHING",
                    (json.dumps(EMPTY_DB),))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _pg_pool.putconn(conn)

def _pg_load():
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("SELECT data FROM app_state WHERE id='main'")
        row = cur.fetchone()
        db = row[0] if row else _fresh_db()
        for k, v in EMPTY_DB.items():
            db.setdefault(k, type(v)())
        return db
    finally:
        _pg_pool.putconn(conn)

def _pg_save(db):
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("UPDATE app_state SET data=%s, updated_at=NOW() WHERE id='main'",
                    (json.dumps(db, default=str),))
        conn.commit()
    finally:
        _pg_pool.putconn(conn)

def _pg_reset():
    _pg_save(_fresh_db())

# ============================================================
# PUBLIC API
# ============================================================
if DATABASE_URL and _pg_connect():
    print("[DB] Using PostgreSQL backend")
    load_db = _pg_load
    save_db = _pg_save
    get_db = _pg_load
    reset_db = _pg_reset
else:
    print(f"[DB] Using file backend ({DB_PATH.name})")
    load_db = _file_load
    save_db = _file_save
    get_db = _file_get
    reset_db = _file_reset

# ============================================================
# RECORD HELPERS
# ============================================================
def next_id(db: dict, collection: str) -> int:
    """Next integer id for a collection (max existing + 1)."""
    return max((r.get("id", 0) for r in db.get(collection, [])), default=0) + 1

def find_record(db: dict, collection: str, record_id: int):
    for r in db.get(collection, []):
        if r.get("id") == record_id:
            return r
    return None

def remove_record(db: dict, collection: str, record_id: int) -> bool:
    """Remove a record in place. Returns False when nothing matched."""
    records = db.get(collection, [])
    kept = [r for r in records if r.get("id") != record_id]
    if len(kept) == len(records):
        return False
    db[collection] = kept
    return True

def log_activity(db: dict, action: str, actor: str = "system", **details):
    """Append an entry to the activity log (capped at 500 entries)."""
    db.setdefault("activity_log", []).append({
        "id": next_id(db, "activity_log"), "action": action, "actor": actor,
        "timestamp": datetime.now().isoformat(), **details})
    if len(db["activity_log"]) > 500:
        db["activity_log"] = db["activity_log"][-500:]

# ============================================================
# FILE STORAGE
# ============================================================
def save_uploaded_file(filename: str, content: bytes) -> None:
    """Save an uploaded file to local filesystem."""
    path = UPLOAD_DIR / filename
    path.write_bytes(content)

def load_uploaded_file(filename: str) -> tuple:
    """Load an uploaded file, return (path, exists)."""
    path = UPLOAD_DIR / filename
    return path, path.exists()

def delete_uploaded_file(filename: str) -> None:
    path = UPLOAD_DIR / filename
    if path.exists():
        path.unlink()

# ============================================================
# UTILITIES
# ============================================================
def _n(val, default=0):
    """Safe numeric conversion: None/empty → default, strings → float."""
    if val is None or val == "":
        return float(default)
    try:
        return float(str(val).replace(",", ""))
    except (ValueError, TypeError):
        return float(default)
