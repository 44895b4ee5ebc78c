"""
EduPath Consult — Student Consultancy Backend
v1.4 — registration + profiles, consultation booking, scholarship catalogue,
       visa and enrollment document analysis, admin console with export
"""

import os, uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Request, Response, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError

from edupath.config import (
    VERSION, USE_REAL_API, SEED_ADMIN, FRONTEND_DIR, ROLES, USER_STATUSES,
    ENROLLMENT_DOCUMENT_TYPES, REQUIRED_PROFILE_FIELDS, APPOINTMENT_STATUSES,
)
from edupath.db import (
    get_db, save_db, next_id, find_record, remove_record, log_activity,
    save_uploaded_file, load_uploaded_file, delete_uploaded_file,
)
from edupath.auth import (
    hash_password, authenticate, set_session_cookie, clear_session_cookie,
    get_current_user, require_admin, can_access, seed_admin,
    find_user_by_username, find_user_by_email,
)
from edupath.settings import get_settings, update_settings
from edupath.profiles import (
    RegistrationForm, LoginForm, ProfileUpdate, format_errors, validate_registration_step,
    create_user_record, apply_profile_update, profile_completion, safe_user, filter_users,
)
from edupath.appointments import (
    AppointmentForm, TransitionError, create_appointment, change_status, filter_appointments,
)
from edupath.scholarships import (
    ScholarshipForm, ScholarshipUpdate, create_scholarship, update_scholarship,
    search_scholarships, filter_options, scholarship_stats,
)
from edupath.documents import DocumentError, extract_text, media_type
from edupath.analysis import analyze_visa_document, analyze_enrollment_document, analysis_cache
from edupath.export import export_table
from edupath.feedback import (
    FeedbackForm, find_feedback, create_feedback, update_feedback, remove_feedback_for,
    admin_feedback_list, feedback_stats, ANALYSIS_COLLECTIONS,
)
from edupath.updates import (
    UpdateForm, UpdateEdit, create_update, edit_update, remove_update,
    updates_for_user, unread_count, mark_viewed, is_visible_to, view_counts,
)
from edupath.watchlist import (
    WatchlistForm, WatchlistEdit, DuplicateEntryError, find_entry, add_entry, edit_entry, user_watchlist,
)

app = FastAPI(title="EduPath Consult", version=VERSION)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

if SEED_ADMIN:
    seed_admin()


# ============================================================
# ERROR MAPPING
# ============================================================
@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(TransitionError)
async def transition_error_handler(request: Request, exc: TransitionError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(DuplicateEntryError)
async def duplicate_entry_handler(request: Request, exc: DuplicateEntryError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ============================================================
# REQUEST HELPERS
# ============================================================
async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(400, "Request body must be a JSON object")
    return data


def _validate(model, data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise HTTPException(400, {"message": "Validation failed", "errors": format_errors(e)})


def _get_or_404(db: dict, collection: str, record_id: int, label: str) -> dict:
    rec = find_record(db, collection, record_id)
    if not rec:
        raise HTTPException(404, f"{label} not found")
    return rec


def _reserve_quota(user: dict):
    """Claim one analysis slot before any awaited work. Admins are counted
    but never blocked."""
    db = get_db()
    rec = _get_or_404(db, "users", user["id"], "User")
    used, limit = rec.get("analysisCount", 0), rec.get("maxAnalyses", 0)
    if rec.get("role") != "admin" and used >= limit:
        raise HTTPException(403, f"Analysis limit reached ({limit}). "
                                 "Contact us to request more analyses.")
    rec["analysisCount"] = used + 1
    save_db(db)


def _release_quota(db: dict, user: dict):
    """Give back a reserved slot (failed upload, fallback or unavailable template)."""
    rec = find_record(db, "users", user["id"])
    if rec is not None and rec.get("analysisCount", 0) > 0:
        rec["analysisCount"] -= 1


async def _read_upload(file: UploadFile) -> tuple:
    """Returns (extracted_text, original_name, stored_name)."""
    content = await file.read()
    name = Path(file.filename or "document").name
    text = extract_text(content, name)
    stored = f"{str(uuid.uuid4())[:8].upper()}_{name}"
    save_uploaded_file(stored, content)
    return text, name, stored


def _newest_first(records: list) -> list:
    return sorted(records, key=lambda r: r.get("createdAt", ""), reverse=True)


def _with_username(records: list, db: dict) -> list:
    names = {u["id"]: u.get("username") for u in db["users"]}
    return [{**r, "username": names.get(r.get("userId"))} for r in records]


def _serve_stored(rec: dict):
    """Stream the original upload behind an analysis record."""
    stored = rec.get("storedFile") or ""
    if not stored or ".." in stored or "/" in stored or "\\" in stored:
        raise HTTPException(404, "Original file not available")
    fp, exists = load_uploaded_file(stored)
    if not exists:
        raise HTTPException(404, "Original file not available")
    return FileResponse(fp, media_type=media_type(stored), filename=rec.get("filename") or stored)


# ============================================================
# HEALTH & ANNOUNCEMENT
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "product": "EduPath Consult", "version": VERSION,
            "claude_api": "connected" if USE_REAL_API else "mock_mode",
            "cache": analysis_cache.stats()}


@app.get("/api/system-announcement")
async def system_announcement():
    return {"announcement": get_settings()["systemAnnouncement"]}


# ============================================================
# AUTH
# ============================================================
@app.post("/api/register/validate")
async def register_validate_step(request: Request, step: str):
    data = await _json_body(request)
    try:
        errors = validate_registration_step(step, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"step": step, "valid": not errors, "errors": errors}


@app.post("/api/register", status_code=201)
async def register(request: Request, response: Response):
    settings = get_settings()
    if not settings["registrationOpen"]:
        raise HTTPException(400, "Registration is currently closed")
    form = _validate(RegistrationForm, await _json_body(request))
    db = get_db()
    if find_user_by_username(db, form.username):
        raise HTTPException(400, "Username already exists")
    if find_user_by_email(db, form.email):
        raise HTTPException(400, "Email already registered")
    user = create_user_record(form, hash_password(form.password), db, settings["defaultMaxAnalyses"])
    db["users"].append(user)
    log_activity(db, "user_registered", actor=user["username"], userId=user["id"])
    save_db(db)
    set_session_cookie(response, user)
    print(f"[AUTH] Registered '{user['username']}' (id={user['id']})")
    return safe_user(user)


@app.post("/api/login")
async def login(request: Request, response: Response):
    form = _validate(LoginForm, await _json_body(request))
    user = authenticate(form.username, form.password)
    if not user:
        raise HTTPException(401, "Invalid username or password")
    if user.get("status") == "suspended":
        raise HTTPException(403, "Account suspended")
    set_session_cookie(response, user)
    return safe_user(user)


@app.post("/api/logout")
async def logout(response: Response):
    clear_session_cookie(response)
    return {"success": True}


# ============================================================
# CURRENT USER
# ============================================================
@app.get("/api/user")
async def current_user(user: dict = Depends(get_current_user)):
    return safe_user(user)


@app.get("/api/user/profile-completion")
async def user_profile_completion(user: dict = Depends(get_current_user)):
    return profile_completion(user)


@app.patch("/api/user/profile")
async def update_profile(request: Request, user: dict = Depends(get_current_user)):
    update = _validate(ProfileUpdate, await _json_body(request))
    db = get_db()
    rec = _get_or_404(db, "users", user["id"], "User")
    if update.email and update.email.lower() != (rec.get("email") or "").lower():
        other = find_user_by_email(db, update.email)
        if other and other["id"] != rec["id"]:
            raise HTTPException(400, "Email already registered")
    changed = apply_profile_update(rec, update)
    log_activity(db, "profile_updated", actor=rec["username"], fields=changed)
    save_db(db)
    return {"user": safe_user(rec), "completion": profile_completion(rec), "changed": changed}


@app.post("/api/user/complete-profile")
async def complete_profile(request: Request, user: dict = Depends(get_current_user)):
    update = _validate(ProfileUpdate, await _json_body(request))
    db = get_db()
    rec = _get_or_404(db, "users", user["id"], "User")
    merged = {**rec, **update.model_dump(by_alias=True, exclude_unset=True)}
    completion = profile_completion(merged)
    if not completion["isComplete"]:
        raise HTTPException(400, {"message": "Profile is incomplete",
                                  "missingFields": completion["missingFields"]})
    apply_profile_update(rec, update)
    rec["profileCompletedAt"] = datetime.now().isoformat()
    log_activity(db, "profile_completed", actor=rec["username"])
    save_db(db)
    return {"user": safe_user(rec), "completion": profile_completion(rec)}


@app.get("/api/user/stats")
async def user_stats(user: dict = Depends(get_current_user)):
    db = get_db()
    uid = user["id"]
    unlimited = user.get("role") == "admin"
    used, limit = user.get("analysisCount", 0), user.get("maxAnalyses", 0)
    return {
        "analysisCount": used,
        "maxAnalyses": None if unlimited else limit,
        "remainingAnalyses": None if unlimited else max(0, limit - used),
        "visaAnalyses": sum(1 for a in db["analyses"] if a.get("userId") == uid),
        "enrollmentAnalyses": sum(1 for a in db["enrollment_analyses"] if a.get("userId") == uid),
        "appointments": sum(1 for a in db["appointments"] if a.get("userId") == uid),
        "profileCompletion": profile_completion(user)["completionPercentage"],
    }


# ============================================================
# VISA ANALYSES
# ============================================================
@app.post("/api/analyze")
async def analyze(file: UploadFile = File(...), is_public: bool = Form(False),
                  user: dict = Depends(get_current_user)):
    _reserve_quota(user)
    try:
        text, name, stored = await _read_upload(file)
        analysis, tokens = await analyze_visa_document(text)
    except Exception:
        db = get_db()
        _release_quota(db, user)
        save_db(db)
        raise
    source = analysis.pop("_source", "claude")

    db = get_db()
    rec = {
        "id": next_id(db, "analyses"),
        "userId": user["id"], "filename": name, "storedFile": stored, "originalText": text,
        "analysisType": analysis.pop("analysisType"), "summary": analysis.get("summary", ""),
        "rejectionReasons": analysis.get("rejectionReasons", []), "keyTerms": analysis.get("keyTerms", []),
        "recommendations": analysis.get("recommendations", []), "nextSteps": analysis.get("nextSteps", []),
        "isPublic": is_public, "tokensUsed": tokens, "source": source,
        "createdAt": datetime.now().isoformat(),
    }
    db["analyses"].append(rec)
    if source == "fallback":
        _release_quota(db, user)
    log_activity(db, "visa_analysis", actor=user["username"], analysisId=rec["id"], source=source)
    save_db(db)
    return rec


@app.get("/api/analyses")
async def list_analyses(user: dict = Depends(get_current_user)):
    db = get_db()
    return _newest_first([a for a in db["analyses"] if a.get("userId") == user["id"]])


@app.get("/api/analyses/{aid}")
async def get_analysis(aid: int, user: dict = Depends(get_current_user)):
    rec = _get_or_404(get_db(), "analyses", aid, "Analysis")
    if not (can_access(user, rec) or rec.get("isPublic")):
        raise HTTPException(403, "Not your analysis")
    return rec


@app.get("/api/analyses/{aid}/file")
async def get_analysis_file(aid: int, user: dict = Depends(get_current_user)):
    rec = _get_or_404(get_db(), "analyses", aid, "Analysis")
    if not can_access(user, rec):
        raise HTTPException(403, "Not your analysis")
    return _serve_stored(rec)


@app.delete("/api/analyses/{aid}")
async def delete_analysis(aid: int, user: dict = Depends(get_current_user)):
    db = get_db()
    rec = _get_or_404(db, "analyses", aid, "Analysis")
    if not can_access(user, rec):
        raise HTTPException(403, "Not your analysis")
    remove_record(db, "analyses", aid)
    remove_feedback_for(db, "visa", [aid])
    if rec.get("storedFile"):
        delete_uploaded_file(rec["storedFile"])
    save_db(db)
    return {"success": True}


# ============================================================
# ENROLLMENT ANALYSES
# ============================================================
@app.post("/api/enrollment-analysis")
async def enrollment_analysis(file: UploadFile = File(...), documentType: str = Form(...),
                              user: dict = Depends(get_current_user)):
    if documentType not in ENROLLMENT_DOCUMENT_TYPES:
        raise HTTPException(400, f"Invalid document type. Must be one of: {', '.join(ENROLLMENT_DOCUMENT_TYPES)}")
    _reserve_quota(user)
    try:
        text, name, stored = await _read_upload(file)
        result = await analyze_enrollment_document(text, documentType, name)
    except Exception:
        db = get_db()
        _release_quota(db, user)
        save_db(db)
        raise

    db = get_db()
    rec = {
        "id": next_id(db, "enrollment_analyses"),
        "userId": user["id"], "filename": name, "storedFile": stored, "documentType": documentType,
        "originalText": text, "analysis": result["analysis"],
        "summary": result["analysis"].get("summary", ""),
        "tokensUsed": result["tokensUsed"], "processingTime": result["processingTime"],
        "cached": result["cached"], "source": result["source"],
        "createdAt": datetime.now().isoformat(),
    }
    db["enrollment_analyses"].append(rec)
    if result["source"] in ("fallback", "template_unavailable"):
        _release_quota(db, user)
    log_activity(db, "enrollment_analysis", actor=user["username"], analysisId=rec["id"],
                 documentType=documentType, source=result["source"])
    save_db(db)
    return rec


@app.get("/api/enrollment-analyses")
async def list_enrollment_analyses(user: dict = Depends(get_current_user)):
    db = get_db()
    return _newest_first([a for a in db["enrollment_analyses"] if a.get("userId") == user["id"]])


@app.get("/api/enrollment-analyses/{aid}")
async def get_enrollment_analysis(aid: int, user: dict = Depends(get_current_user)):
    rec = _get_or_404(get_db(), "enrollment_analyses", aid, "Enrollment analysis")
    if not can_access(user, rec):
        raise HTTPException(403, "Not your analysis")
    return rec


@app.get("/api/enrollment-analyses/{aid}/file")
async def get_enrollment_analysis_file(aid: int, user: dict = Depends(get_current_user)):
    rec = _get_or_404(get_db(), "enrollment_analyses", aid, "Enrollment analysis")
    if not can_access(user, rec):
        raise HTTPException(403, "Not your analysis")
    return _serve_stored(rec)


@app.delete("/api/enrollment-analyses/{aid}")
async def delete_enrollment_analysis(aid: int, user: dict = Depends(get_current_user)):
    db = get_db()
    rec = _get_or_404(db, "enrollment_analyses", aid, "Enrollment analysis")
    if not can_access(user, rec):
        raise HTTPException(403, "Not your analysis")
    remove_record(db, "enrollment_analyses", aid)
    remove_feedback_for(db, "enrollment", [aid])
    if rec.get("storedFile"):
        delete_uploaded_file(rec["storedFile"])
    save_db(db)
    return {"success": True}


# ============================================================
# ANALYSIS FEEDBACK
# ============================================================
def _feedback_target(db: dict, analysis_type: str, aid: int, user: dict) -> dict:
    rec = _get_or_404(db, ANALYSIS_COLLECTIONS[analysis_type], aid, "Analysis")
    if rec.get("userId") != user["id"]:
        raise HTTPException(403, "Not your analysis")
    return rec


def _read_feedback(analysis_type: str, aid: int, user: dict):
    db = get_db()
    _feedback_target(db, analysis_type, aid, user)
    return find_feedback(db, user["id"], analysis_type, aid)


async def _submit_feedback(analysis_type: str, aid: int, request: Request, user: dict) -> dict:
    form = _validate(FeedbackForm, await _json_body(request))
    db = get_db()
    _feedback_target(db, analysis_type, aid, user)
    if find_feedback(db, user["id"], analysis_type, aid):
        raise HTTPException(409, "Feedback already submitted, update it instead")
    rec = create_feedback(form, user, analysis_type, aid, db)
    log_activity(db, "feedback_submitted", actor=user["username"], analysisType=analysis_type, analysisId=aid)
    save_db(db)
    return rec


async def _revise_feedback(analysis_type: str, aid: int, request: Request, user: dict) -> dict:
    form = _validate(FeedbackForm, await _json_body(request))
    db = get_db()
    _feedback_target(db, analysis_type, aid, user)
    rec = find_feedback(db, user["id"], analysis_type, aid)
    if not rec:
        raise HTTPException(404, "No feedback to update")
    update_feedback(rec, form)
    save_db(db)
    return rec


@app.get("/api/analyses/{aid}/feedback")
async def get_visa_feedback(aid: int, user: dict = Depends(get_current_user)):
    return _read_feedback("visa", aid, user)


@app.post("/api/analyses/{aid}/feedback", status_code=201)
async def post_visa_feedback(aid: int, request: Request, user: dict = Depends(get_current_user)):
    return await _submit_feedback("visa", aid, request, user)


@app.patch("/api/analyses/{aid}/feedback")
async def patch_visa_feedback(aid: int, request: Request, user: dict = Depends(get_current_user)):
    return await _revise_feedback("visa", aid, request, user)


@app.get("/api/enrollment-analyses/{aid}/feedback")
async def get_enrollment_feedback(aid: int, user: dict = Depends(get_current_user)):
    return _read_feedback("enrollment", aid, user)


@app.post("/api/enrollment-analyses/{aid}/feedback", status_code=201)
async def post_enrollment_feedback(aid: int, request: Request, user: dict = Depends(get_current_user)):
    return await _submit_feedback("enrollment", aid, request, user)


@app.patch("/api/enrollment-analyses/{aid}/feedback")
async def patch_enrollment_feedback(aid: int, request: Request, user: dict = Depends(get_current_user)):
    return await _revise_feedback("enrollment", aid, request, user)


# ============================================================
# APPOINTMENTS
# ============================================================
@app.post("/api/appointments", status_code=201)
async def book_appointment(request: Request, user: dict = Depends(get_current_user)):
    form = _validate(AppointmentForm, await _json_body(request))
    db = get_db()
    appt = create_appointment(form, user, db)
    log_activity(db, "appointment_requested", actor=user["username"], appointmentId=appt["id"])
    save_db(db)
    return appt


@app.get("/api/appointments")
async def my_appointments(user: dict = Depends(get_current_user)):
    db = get_db()
    return _newest_first([a for a in db["appointments"] if a.get("userId") == user["id"]])


@app.post("/api/appointments/{appt_id}/cancel")
async def cancel_appointment(appt_id: int, user: dict = Depends(get_current_user)):
    db = get_db()
    appt = _get_or_404(db, "appointments", appt_id, "Appointment")
    if appt.get("userId") != user["id"]:
        raise HTTPException(403, "Not your appointment")
    change_status(appt, "cancelled")
    log_activity(db, "appointment_cancelled", actor=user["username"], appointmentId=appt_id)
    save_db(db)
    return appt


# ============================================================
# SCHOLARSHIPS (public)
# ============================================================
@app.get("/api/scholarships")
async def public_scholarships(search: Optional[str] = None, providerType: Optional[str] = None,
                              country: Optional[str] = None, fundingType: Optional[str] = None,
                              difficulty: Optional[str] = None, studyLevel: Optional[str] = None,
                              fieldCategory: Optional[str] = None, renewable: Optional[bool] = None,
                              limit: Optional[int] = None, offset: Optional[int] = None):
    return search_scholarships(get_db()["scholarships"], search=search, status="active",
                               provider_type=providerType, country=country, funding_type=fundingType,
                               difficulty=difficulty, study_level=studyLevel, field_category=fieldCategory,
                               renewable=renewable, limit=limit, offset=offset)


@app.get("/api/scholarships/filters")
async def public_scholarship_filters():
    active = [s for s in get_db()["scholarships"] if s.get("status") == "active"]
    return filter_options(active)


@app.get("/api/scholarships/{sid}")
async def public_scholarship(sid: int):
    rec = find_record(get_db(), "scholarships", sid)
    if not rec or rec.get("status") != "active":
        raise HTTPException(404, "Scholarship not found")
    return rec


# ============================================================
# WATCHLIST
# ============================================================
@app.get("/api/watchlist")
async def my_watchlist(user: dict = Depends(get_current_user)):
    return user_watchlist(get_db(), user["id"])


@app.post("/api/watchlist", status_code=201)
async def add_to_watchlist(request: Request, user: dict = Depends(get_current_user)):
    form = _validate(WatchlistForm, await _json_body(request))
    db = get_db()
    scholarship = find_record(db, "scholarships", form.scholarship_id)
    if not scholarship or scholarship.get("status") != "active":
        raise HTTPException(404, "Scholarship not found")
    rec = add_entry(form, user, db)
    log_activity(db, "watchlist_added", actor=user["username"], scholarshipId=form.scholarship_id)
    save_db(db)
    return rec


@app.get("/api/watchlist/check/{sid}")
async def watchlist_check(sid: int, user: dict = Depends(get_current_user)):
    entry = find_entry(get_db(), user["id"], sid)
    return {"inWatchlist": entry is not None, "entryId": entry["id"] if entry else None}


def _own_entry(db: dict, entry_id: int, user: dict) -> dict:
    entry = find_record(db, "watchlist", entry_id)
    if not entry or entry.get("userId") != user["id"]:
        raise HTTPException(404, "Watchlist entry not found")
    return entry


@app.patch("/api/watchlist/{entry_id}")
async def update_watchlist_entry(entry_id: int, request: Request, user: dict = Depends(get_current_user)):
    edit = _validate(WatchlistEdit, await _json_body(request))
    db = get_db()
    entry = _own_entry(db, entry_id, user)
    edit_entry(entry, edit)
    save_db(db)
    return entry


@app.delete("/api/watchlist/{entry_id}")
async def remove_from_watchlist(entry_id: int, user: dict = Depends(get_current_user)):
    db = get_db()
    _own_entry(db, entry_id, user)
    remove_record(db, "watchlist", entry_id)
    save_db(db)
    return {"success": True}


# ============================================================
# UPDATES (students)
# ============================================================
@app.get("/api/updates")
async def my_updates(user: dict = Depends(get_current_user)):
    return updates_for_user(get_db(), user)


@app.get("/api/updates/unread-count")
async def my_unread_updates(user: dict = Depends(get_current_user)):
    return {"unreadCount": unread_count(get_db(), user)}


def _visible_update(db: dict, update_id: int, user: dict) -> dict:
    update = find_record(db, "updates", update_id)
    if not update or not is_visible_to(update, user):
        raise HTTPException(404, "Update not found")
    return update


@app.post("/api/updates/{update_id}/view")
async def view_update(update_id: int, user: dict = Depends(get_current_user)):
    db = get_db()
    _visible_update(db, update_id, user)
    view = mark_viewed(db, update_id, user["id"])
    save_db(db)
    return view


@app.post("/api/updates/{update_id}/action")
async def act_on_update(update_id: int, user: dict = Depends(get_current_user)):
    db = get_db()
    update = _visible_update(db, update_id, user)
    mark_viewed(db, update_id, user["id"], action=True)
    save_db(db)
    return {"success": True, "externalLink": update.get("externalLink")}


# ============================================================
# ADMIN — USERS
# ============================================================
@app.get("/api/admin/users")
async def admin_users(search: Optional[str] = None, role: Optional[str] = None,
                      status: Optional[str] = None, admin: dict = Depends(require_admin)):
    users = filter_users(get_db()["users"], search=search, role=role, status=status)
    return [safe_user(u) for u in _newest_first(users)]


def _target_user(db: dict, uid: int, admin: dict, action: str) -> dict:
    user = _get_or_404(db, "users", uid, "User")
    if user["id"] == admin["id"]:
        raise HTTPException(400, f"You cannot {action} your own account")
    return user


@app.patch("/api/admin/users/{uid}/role")
async def admin_set_role(uid: int, request: Request, admin: dict = Depends(require_admin)):
    role = (await _json_body(request)).get("role")
    if role not in ROLES:
        raise HTTPException(400, f"Invalid role. Must be one of: {', '.join(ROLES)}")
    db = get_db()
    user = _target_user(db, uid, admin, "change the role of")
    old, user["role"] = user.get("role"), role
    log_activity(db, "role_changed", actor=admin["username"], userId=uid, **{"from": old, "to": role})
    save_db(db)
    return safe_user(user)


@app.patch("/api/admin/users/{uid}/status")
async def admin_set_status(uid: int, request: Request, admin: dict = Depends(require_admin)):
    status = (await _json_body(request)).get("status")
    if status not in USER_STATUSES:
        raise HTTPException(400, f"Invalid status. Must be one of: {', '.join(USER_STATUSES)}")
    db = get_db()
    user = _target_user(db, uid, admin, "suspend or reactivate")
    old, user["status"] = user.get("status", "active"), status
    log_activity(db, "status_changed", actor=admin["username"], userId=uid, **{"from": old, "to": status})
    save_db(db)
    return safe_user(user)


@app.patch("/api/admin/users/{uid}/max-analyses")
async def admin_set_max_analyses(uid: int, request: Request, admin: dict = Depends(require_admin)):
    value = (await _json_body(request)).get("maxAnalyses")
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise HTTPException(400, "maxAnalyses must be a non-negative integer")
    db = get_db()
    user = _get_or_404(db, "users", uid, "User")
    user["maxAnalyses"] = value
    log_activity(db, "quota_changed", actor=admin["username"], userId=uid, maxAnalyses=value)
    save_db(db)
    return safe_user(user)


@app.delete("/api/admin/users/{uid}")
async def admin_delete_user(uid: int, admin: dict = Depends(require_admin)):
    db = get_db()
    user = _target_user(db, uid, admin, "delete")
    for coll in ("analyses", "enrollment_analyses"):
        for rec in [r for r in db[coll] if r.get("userId") == uid]:
            if rec.get("storedFile"):
                delete_uploaded_file(rec["storedFile"])
        db[coll] = [r for r in db[coll] if r.get("userId") != uid]
    db["appointments"] = [a for a in db["appointments"] if a.get("userId") != uid]
    for coll in ("feedback", "watchlist", "update_views"):
        db[coll] = [r for r in db[coll] if r.get("userId") != uid]
    remove_record(db, "users", uid)
    log_activity(db, "user_deleted", actor=admin["username"], userId=uid, username=user["username"])
    save_db(db)
    return {"success": True}


# ============================================================
# ADMIN — APPOINTMENTS
# ============================================================
@app.get("/api/admin/appointments")
async def admin_appointments(search: Optional[str] = None, status: Optional[str] = None,
                             admin: dict = Depends(require_admin)):
    db = get_db()
    users_by_id = {u["id"]: u for u in db["users"]}
    return _with_username(filter_appointments(db["appointments"], users_by_id, search=search, status=status), db)


@app.patch("/api/admin/appointments/{appt_id}/status")
async def admin_appointment_status(appt_id: int, request: Request, admin: dict = Depends(require_admin)):
    status = (await _json_body(request)).get("status")
    db = get_db()
    appt = _get_or_404(db, "appointments", appt_id, "Appointment")
    old = appt.get("status")
    change_status(appt, status)
    log_activity(db, "appointment_status", actor=admin["username"], appointmentId=appt_id,
                 **{"from": old, "to": status})
    save_db(db)
    return appt


# ============================================================
# ADMIN — SCHOLARSHIPS
# ============================================================
@app.get("/api/admin/scholarships")
async def admin_scholarships(search: Optional[str] = None, status: Optional[str] = None,
                             providerType: Optional[str] = None, country: Optional[str] = None,
                             fundingType: Optional[str] = None, difficulty: Optional[str] = None,
                             limit: Optional[int] = None, offset: Optional[int] = None,
                             admin: dict = Depends(require_admin)):
    return search_scholarships(get_db()["scholarships"], search=search, status=status,
                               provider_type=providerType, country=country, funding_type=fundingType,
                               difficulty=difficulty, limit=limit, offset=offset)


@app.post("/api/admin/scholarships", status_code=201)
async def admin_create_scholarship(request: Request, admin: dict = Depends(require_admin)):
    form = _validate(ScholarshipForm, await _json_body(request))
    db = get_db()
    rec = create_scholarship(form, db, created_by=admin["username"])
    log_activity(db, "scholarship_created", actor=admin["username"], scholarshipId=rec["id"])
    save_db(db)
    return rec


@app.get("/api/admin/scholarships/{sid}")
async def admin_get_scholarship(sid: int, admin: dict = Depends(require_admin)):
    return _get_or_404(get_db(), "scholarships", sid, "Scholarship")


@app.put("/api/admin/scholarships/{sid}")
async def admin_update_scholarship(sid: int, request: Request, admin: dict = Depends(require_admin)):
    update = _validate(ScholarshipUpdate, await _json_body(request))
    db = get_db()
    rec = _get_or_404(db, "scholarships", sid, "Scholarship")
    try:
        changed = update_scholarship(rec, update)
    except ValueError as e:
        raise HTTPException(400, str(e))
    log_activity(db, "scholarship_updated", actor=admin["username"], scholarshipId=sid, fields=changed)
    save_db(db)
    return rec


@app.delete("/api/admin/scholarships/{sid}")
async def admin_delete_scholarship(sid: int, admin: dict = Depends(require_admin)):
    db = get_db()
    if not remove_record(db, "scholarships", sid):
        raise HTTPException(404, "Scholarship not found")
    db["watchlist"] = [w for w in db["watchlist"] if w.get("scholarshipId") != sid]
    log_activity(db, "scholarship_deleted", actor=admin["username"], scholarshipId=sid)
    save_db(db)
    return {"success": True}


# ============================================================
# ADMIN — ANALYSES
# ============================================================
@app.get("/api/admin/analyses")
async def admin_analyses(admin: dict = Depends(require_admin)):
    db = get_db()
    return _with_username(_newest_first(db["analyses"]), db)


@app.get("/api/admin/enrollment-analyses")
async def admin_enrollment_analyses(admin: dict = Depends(require_admin)):
    db = get_db()
    return _with_username(_newest_first(db["enrollment_analyses"]), db)


# ============================================================
# ADMIN — UPDATES & FEEDBACK
# ============================================================
@app.get("/api/admin/updates")
async def admin_updates(admin: dict = Depends(require_admin)):
    db = get_db()
    counts = view_counts(db)
    return [{**u, **counts.get(u["id"], {"views": 0, "actions": 0})}
            for u in sorted(db["updates"], key=lambda u: u.get("publishedAt", ""), reverse=True)]


@app.post("/api/admin/updates", status_code=201)
async def admin_create_update(request: Request, admin: dict = Depends(require_admin)):
    form = _validate(UpdateForm, await _json_body(request))
    db = get_db()
    rec = create_update(form, db, created_by=admin["username"])
    log_activity(db, "update_published", actor=admin["username"], updateId=rec["id"])
    save_db(db)
    return rec


@app.patch("/api/admin/updates/{update_id}")
async def admin_edit_update(update_id: int, request: Request, admin: dict = Depends(require_admin)):
    edit = _validate(UpdateEdit, await _json_body(request))
    db = get_db()
    rec = _get_or_404(db, "updates", update_id, "Update")
    try:
        changed = edit_update(rec, edit)
    except ValueError as e:
        raise HTTPException(400, str(e))
    log_activity(db, "update_edited", actor=admin["username"], updateId=update_id, fields=changed)
    save_db(db)
    return rec


@app.delete("/api/admin/updates/{update_id}")
async def admin_delete_update(update_id: int, admin: dict = Depends(require_admin)):
    db = get_db()
    if not remove_update(db, update_id):
        raise HTTPException(404, "Update not found")
    log_activity(db, "update_deleted", actor=admin["username"], updateId=update_id)
    save_db(db)
    return {"success": True}


@app.get("/api/admin/feedback")
async def admin_feedback(search: Optional[str] = None, analysisType: Optional[str] = None,
                         admin: dict = Depends(require_admin)):
    return admin_feedback_list(get_db(), search=search, analysis_type=analysisType)


# ============================================================
# ADMIN — SYSTEM
# ============================================================
@app.get("/api/admin/system-stats")
async def system_stats(admin: dict = Depends(require_admin)):
    db = get_db()
    users, appts = db["users"], db["appointments"]
    visa, enrol = db["analyses"], db["enrollment_analyses"]
    by_status = {s: 0 for s in APPOINTMENT_STATUSES}
    for a in appts:
        by_status[a.get("status", "pending")] = by_status.get(a.get("status", "pending"), 0) + 1
    return {
        "users": {"total": len(users), "admins": sum(1 for u in users if u.get("role") == "admin"),
                  "suspended": sum(1 for u in users if u.get("status") == "suspended"),
                  "profilesComplete": sum(1 for u in users if profile_completion(u)["isComplete"]),
                  "atQuota": sum(1 for u in users if u.get("role") != "admin"
                                 and u.get("analysisCount", 0) >= u.get("maxAnalyses", 0))},
        "appointments": {"total": len(appts), "byStatus": by_status},
        "analyses": {"visa": len(visa), "enrollment": len(enrol),
                     "rejections": sum(1 for a in visa if a.get("analysisType") == "rejection"),
                     "fallbacks": sum(1 for a in visa + enrol if a.get("source") == "fallback"),
                     "tokensUsed": sum(a.get("tokensUsed", 0) for a in visa + enrol)},
        "scholarships": scholarship_stats(db["scholarships"]),
        "feedback": feedback_stats(db["feedback"]),
        "updates": {"total": len(db["updates"]),
                    "active": sum(1 for u in db["updates"] if u.get("isActive", True)),
                    "views": len(db["update_views"])},
        "cache": analysis_cache.stats(),
        "requiredProfileFields": len(REQUIRED_PROFILE_FIELDS),
        "recentActivity": db["activity_log"][-20:][::-1],
    }


@app.get("/api/admin/system-settings")
async def admin_get_settings(admin: dict = Depends(require_admin)):
    return get_settings()


@app.patch("/api/admin/system-settings")
async def admin_update_settings(request: Request, admin: dict = Depends(require_admin)):
    updates = await _json_body(request)
    settings = update_settings(updates)
    db = get_db()
    log_activity(db, "settings_updated", actor=admin["username"], keys=sorted(updates))
    save_db(db)
    return settings


@app.get("/api/admin/cache")
async def admin_cache_stats(admin: dict = Depends(require_admin)):
    return analysis_cache.stats()


@app.delete("/api/admin/cache")
async def admin_clear_cache(admin: dict = Depends(require_admin)):
    return {"success": True, "cleared": analysis_cache.clear()}


@app.get("/api/admin/export/{table}")
async def admin_export(table: str, format: str = "csv", admin: dict = Depends(require_admin)):
    try:
        body, media, filename = export_table(get_db(), table, format)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return Response(content=body, media_type=media,
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


# ============================================================
# FRONTEND
# ============================================================
@app.get("/")
async def serve_index():
    index = FRONTEND_DIR / "index.html"
    if not index.exists():
        return {"product": "EduPath Consult", "version": VERSION}
    return FileResponse(index, media_type="text/html")


@app.get("/{path:path}")
async def serve_static(path: str):
    if path.startswith("api/"):
        raise HTTPException(404)
    fp = (FRONTEND_DIR / path).resolve()
    if fp.is_relative_to(FRONTEND_DIR.resolve()) and fp.exists() and fp.is_file():
        return FileResponse(fp)
    index = FRONTEND_DIR / "index.html"
    if not index.exists():
        raise HTTPException(404)
    return FileResponse(index, media_type="text/html")


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    print(f"Starting EduPath Consult v{VERSION} on port {port}")
    print(f"Claude API: {'Connected' if USE_REAL_API else 'Mock Mode'}")
    uvicorn.run(app, host="0.0.0.0", port=port)
