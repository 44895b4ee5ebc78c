"""
Integration tests for the student-facing API: registration, sessions,
profile, appointments, scholarships and document analysis (mock LLM mode).
"""

import pytest

from edupath.settings import update_settings

COMPLETE_PROFILE = {
    "firstName": "Priya", "lastName": "Sharma", "dateOfBirth": "2000-05-14", "gender": "Female",
    "email": "priya@example.com", "phoneNumber": "+9779812345678", "nationality": "Nepali",
    "city": "Kathmandu", "country": "Nepal", "highestQualification": "Bachelor",
    "highestInstitution": "Tribhuvan University", "highestCountry": "Nepal", "highestGpa": "3.6",
    "graduationYear": "2022", "interestedCourse": "Master of IT", "fieldOfStudy": "Computing",
    "preferredIntake": "February 2026", "budgetRange": "20-30K", "preferredCountries": ["Australia"],
    "currentEmploymentStatus": "Employed",
}


def _upload(client, url, text="The visa application has been refused.", name="letter.txt", **data):
    return client.post(url, files={"file": (name, text.encode(), "text/plain")}, data=data)


class TestRegistrationAndSession:

    def test_register_sets_session(self, client, registration_data):
        resp = client.post("/api/register", json=registration_data)
        assert resp.status_code == 201
        body = resp.json()
        assert body["username"] == "priya_s"
        assert "password" not in body
        assert body["maxAnalyses"] == 3
        assert "session" in resp.cookies

        me = client.get("/api/user")
        assert me.status_code == 200
        assert me.json()["email"] == "priya@example.com"

    def test_password_mismatch(self, client, registration_data):
        registration_data["confirmPassword"] = "other-pass"
        resp = client.post("/api/register", json=registration_data)
        assert resp.status_code == 400
        errors = resp.json()["detail"]["errors"]
        assert {"field": "confirmPassword", "message": "Passwords don't match"} in errors

    def test_duplicate_username(self, client, registration_data):
        client.post("/api/register", json=registration_data)
        registration_data["email"] = "other@example.com"
        resp = client.post("/api/register", json=registration_data)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Username already exists"

    def test_registration_closed(self, client, registration_data):
        update_settings({"registrationOpen": False})
        assert client.post("/api/register", json=registration_data).status_code == 400

    def test_new_users_get_current_default_quota(self, client, registration_data):
        update_settings({"defaultMaxAnalyses": 7})
        assert client.post("/api/register", json=registration_data).json()["maxAnalyses"] == 7

    def test_step_validation(self, client):
        ok = client.post("/api/register/validate?step=personal",
                         json={"firstName": "Priya", "lastName": "Sharma", "phoneNumber": "123456",
                               "city": "Kathmandu", "country": "Nepal"})
        assert ok.json() == {"step": "personal", "valid": True, "errors": []}
        bad = client.post("/api/register/validate?step=account", json={"username": "ab"})
        assert bad.json()["valid"] is False
        assert client.post("/api/register/validate?step=nope", json={}).status_code == 400

    def test_login_logout(self, client, registration_data):
        client.post("/api/register", json=registration_data)
        client.post("/api/logout")
        assert client.get("/api/user").status_code == 401

        assert client.post("/api/login", json={"username": "priya_s", "password": "wrong-pass"}).status_code == 401
        resp = client.post("/api/login", json={"username": "priya_s", "password": "secret123"})
        assert resp.status_code == 200
        assert client.get("/api/user").status_code == 200

    def test_bearer_token_accepted(self, client, registration_data):
        resp = client.post("/api/register", json=registration_data)
        token = resp.cookies["session"]
        client.cookies.clear()
        me = client.get("/api/user", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200

    def test_unauthenticated(self, client):
        assert client.get("/api/user").status_code == 401
        assert client.get("/api/user/stats").status_code == 401


class TestProfile:

    def test_partial_update_and_completion(self, user_client):
        before = user_client.get("/api/user/profile-completion").json()
        assert before["isComplete"] is False

        resp = user_client.patch("/api/user/profile", json={"graduationYear": "2022", "gender": "Female"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["graduationYear"] == 2022
        assert body["user"]["currentAcademicGap"] >= 4
        assert body["completion"]["completionPercentage"] > before["completionPercentage"]

    def test_invalid_update_rejected(self, user_client):
        resp = user_client.patch("/api/user/profile", json={"budgetRange": "a lot"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["errors"][0]["field"] == "budgetRange"

    def test_complete_profile_requires_all_fields(self, user_client):
        resp = user_client.post("/api/user/complete-profile", json={"gender": "Female"})
        assert resp.status_code == 400
        assert "Date Of Birth" in resp.json()["detail"]["missingFields"]

        done = user_client.post("/api/user/complete-profile", json=COMPLETE_PROFILE)
        assert done.status_code == 200
        assert done.json()["completion"]["isComplete"] is True
        assert user_client.get("/api/user/profile-completion").json()["completionPercentage"] == 100


class TestAppointments:

    APPT = {"name": "Priya Sharma", "email": "priya@example.com", "phoneNumber": "+9779812345678",
            "preferredContact": "viber", "subject": "Course selection", "requestedDate": "2026-11-05T09:00:00"}

    def test_book_list_cancel(self, user_client):
        created = user_client.post("/api/appointments", json=self.APPT)
        assert created.status_code == 201
        appt_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        mine = user_client.get("/api/appointments").json()
        assert [a["id"] for a in mine] == [appt_id]

        cancelled = user_client.post(f"/api/appointments/{appt_id}/cancel")
        assert cancelled.json()["status"] == "cancelled"
        assert user_client.post(f"/api/appointments/{appt_id}/cancel").status_code == 400

    def test_invalid_booking(self, user_client):
        resp = user_client.post("/api/appointments", json={**self.APPT, "preferredContact": "telegram"})
        assert resp.status_code == 400


class TestVisaAnalysis:

    def test_analyze_and_history(self, user_client):
        resp = _upload(user_client, "/api/analyze")
        assert resp.status_code == 200
        rec = resp.json()
        assert rec["analysisType"] == "rejection"
        assert rec["source"] == "mock"
        assert rec["filename"] == "letter.txt"

        history = user_client.get("/api/analyses").json()
        assert [a["id"] for a in history] == [rec["id"]]
        assert user_client.get(f"/api/analyses/{rec['id']}").status_code == 200
        assert user_client.get("/api/user/stats").json()["remainingAnalyses"] == 2

        assert user_client.delete(f"/api/analyses/{rec['id']}").json() == {"success": True}
        assert user_client.get(f"/api/analyses/{rec['id']}").status_code == 404

    def test_quota_enforced(self, user_client):
        for _ in range(3):
            assert _upload(user_client, "/api/analyze").status_code == 200
        blocked = _upload(user_client, "/api/analyze")
        assert blocked.status_code == 403
        assert "limit" in blocked.json()["detail"].lower()

    def test_unsupported_file(self, user_client):
        resp = _upload(user_client, "/api/analyze", name="letter.docx")
        assert resp.status_code == 400
        assert user_client.get("/api/user/stats").json()["analysisCount"] == 0

    def test_original_file_download(self, user_client):
        rec = _upload(user_client, "/api/analyze", text="Visa refused on financial grounds").json()
        resp = user_client.get(f"/api/analyses/{rec['id']}/file")
        assert resp.status_code == 200
        assert resp.text == "Visa refused on financial grounds"
        assert resp.headers["content-type"].startswith("text/plain")

    def test_other_users_cannot_read(self, user_client):
        from fastapi.testclient import TestClient
        from edupath.server import app
        rec = _upload(user_client, "/api/analyze").json()

        stranger = TestClient(app)
        stranger.post("/api/register", json={
            "username": "someone", "password": "secret123", "confirmPassword": "secret123",
            "email": "someone@example.com", "firstName": "S", "lastName": "O", "phoneNumber": "1",
            "studyDestination": "UK", "startDate": "2026", "city": "X", "country": "Y",
            "counsellingMode": "phone", "fundingSource": "Self", "studyLevel": "Bachelor",
            "agreeToTerms": True})
        assert stranger.get(f"/api/analyses/{rec['id']}").status_code == 403
        assert stranger.delete(f"/api/analyses/{rec['id']}").status_code == 403


class TestEnrollmentAnalysis:

    COE_TEXT = "Confirmation of Enrolment\nProvider: UTS CRICOS 00099F\nCourse: Master of IT"

    def test_repeat_upload_served_from_cache(self, user_client):
        first = _upload(user_client, "/api/enrollment-analysis", text=self.COE_TEXT, name="coe.txt",
                        documentType="coe")
        second = _upload(user_client, "/api/enrollment-analysis", text=self.COE_TEXT.upper(), name="coe2.txt",
                         documentType="coe")
        assert first.status_code == 200 and second.status_code == 200
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert second.json()["analysis"] == first.json()["analysis"]
        assert len(user_client.get("/api/enrollment-analyses").json()) == 2

    def test_unsupported_type_does_not_use_quota(self, user_client):
        resp = _upload(user_client, "/api/enrollment-analysis", text="something", documentType="other")
        assert resp.status_code == 200
        assert resp.json()["source"] == "template_unavailable"
        assert user_client.get("/api/user/stats").json()["analysisCount"] == 0

    @pytest.mark.parametrize("doc_type", ["passport", ""])
    def test_invalid_document_type(self, user_client, doc_type):
        resp = _upload(user_client, "/api/enrollment-analysis", documentType=doc_type)
        assert resp.status_code in (400, 422)


class TestPublicEndpoints:

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["claude_api"] == "mock_mode"
        assert "size" in body["cache"]

    def test_announcement(self, client):
        update_settings({"systemAnnouncement": "Closed for Dashain"})
        assert client.get("/api/system-announcement").json() == {"announcement": "Closed for Dashain"}

    def test_unknown_api_path_is_404(self, client):
        assert client.get("/api/does-not-exist").status_code == 404


class TestQuotaUnderConcurrency:

    async def test_parallel_uploads_cannot_exceed_quota(self, registration_data, monkeypatch):
        import asyncio
        import httpx
        import edupath.server as server

        real = server.analyze_enrollment_document

        async def slow_analysis(text, document_type, filename):
            await asyncio.sleep(0.05)
            return await real(text, document_type, filename)

        monkeypatch.setattr(server, "analyze_enrollment_document", slow_analysis)
        transport = httpx.ASGITransport(app=server.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            assert (await ac.post("/api/register", json=registration_data)).status_code == 201

            def upload(i):
                return ac.post("/api/enrollment-analysis", data={"documentType": "coe"},
                               files={"file": (f"coe{i}.txt", f"Confirmation of Enrolment {i}".encode(),
                                               "text/plain")})
            responses = await asyncio.gather(*(upload(i) for i in range(5)))
            stats = (await ac.get("/api/user/stats")).json()

        codes = sorted(r.status_code for r in responses)
        assert codes == [200, 200, 200, 403, 403]
        assert stats["analysisCount"] == 3
        assert stats["remainingAnalyses"] == 0

    def test_fallback_gives_the_slot_back(self, user_client, monkeypatch):
        import edupath.server as server

        async def failing(text):
            return {"analysisType": "unknown", "summary": "manual", "_source": "fallback"}, 0

        monkeypatch.setattr(server, "analyze_visa_document", failing)
        resp = _upload(user_client, "/api/analyze")
        assert resp.status_code == 200
        assert resp.json()["source"] == "fallback"
        assert user_client.get("/api/user/stats").json()["analysisCount"] == 0


class TestAnalysisFeedback:

    def test_submit_read_and_revise(self, user_client):
        aid = _upload(user_client, "/api/analyze").json()["id"]
        assert user_client.get(f"/api/analyses/{aid}/feedback").json() is None
        assert user_client.patch(f"/api/analyses/{aid}/feedback", json={"isHelpful": True}).status_code == 404

        created = user_client.post(f"/api/analyses/{aid}/feedback", json={"isAccurate": True, "overallRating": 5})
        assert created.status_code == 201
        assert created.json()["analysisType"] == "visa"
        again = user_client.post(f"/api/analyses/{aid}/feedback", json={"isHelpful": True})
        assert again.status_code == 409

        revised = user_client.patch(f"/api/analyses/{aid}/feedback", json={"feedback": "Helpful breakdown"})
        assert revised.json()["overallRating"] == 5
        assert revised.json()["feedback"] == "Helpful breakdown"

    def test_invalid_and_empty_feedback(self, user_client):
        aid = _upload(user_client, "/api/analyze").json()["id"]
        assert user_client.post(f"/api/analyses/{aid}/feedback", json={}).status_code == 400
        assert user_client.post(f"/api/analyses/{aid}/feedback", json={"clarityRating": 9}).status_code == 400
        assert user_client.post("/api/analyses/999/feedback", json={"isHelpful": True}).status_code == 404

    def test_enrollment_feedback_removed_with_analysis(self, user_client):
        aid = _upload(user_client, "/api/enrollment-analysis", name="coe.txt", documentType="coe").json()["id"]
        user_client.post(f"/api/enrollment-analyses/{aid}/feedback", json={"isHelpful": False})
        user_client.delete(f"/api/enrollment-analyses/{aid}")
        assert user_client.get(f"/api/enrollment-analyses/{aid}/feedback").status_code == 404


class TestWatchlist:

    def _scholarship(self, status="active"):
        from edupath.db import get_db, save_db, next_id
        db = get_db()
        rec = {"id": next_id(db, "scholarships"), "name": "Chevening", "providerName": "FCDO",
               "providerType": "government", "providerCountry": "United Kingdom", "fundingType": "full",
               "status": status, "createdAt": "2026-01-01T00:00:00"}
        db["scholarships"].append(rec)
        save_db(db)
        return rec["id"]

    def test_save_check_update_remove(self, user_client):
        sid = self._scholarship()
        entry = user_client.post("/api/watchlist", json={"scholarshipId": sid, "priorityLevel": "high"})
        assert entry.status_code == 201
        assert user_client.post("/api/watchlist", json={"scholarshipId": sid}).status_code == 409
        assert user_client.get(f"/api/watchlist/check/{sid}").json() == {"inWatchlist": True,
                                                                         "entryId": entry.json()["id"]}

        eid = entry.json()["id"]
        patched = user_client.patch(f"/api/watchlist/{eid}", json={"applicationStatus": "in_progress"})
        assert patched.json()["applicationStatus"] == "in_progress"
        listed = user_client.get("/api/watchlist").json()
        assert listed[0]["scholarship"]["name"] == "Chevening"

        assert user_client.delete(f"/api/watchlist/{eid}").json() == {"success": True}
        assert user_client.get(f"/api/watchlist/check/{sid}").json()["inWatchlist"] is False

    def test_only_active_scholarships(self, user_client):
        sid = self._scholarship(status="draft")
        assert user_client.post("/api/watchlist", json={"scholarshipId": sid}).status_code == 404
        assert user_client.delete("/api/watchlist/999").status_code == 404
