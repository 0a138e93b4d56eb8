"""
HTTP API tests for RevoCity.

Uses httpx AsyncClient + ASGITransport against the app in-process, with the
database dependency bound to mongomock and gateway calls monkeypatched.
"""

import pytest

from revocity import analysis

from conftest import bearer

pytestmark = pytest.mark.asyncio

COMPLAINT = {
    "latitude": 28.5921, "longitude": 77.0460, "area_name": "Sector 5",
    "fill_level": 95, "recommendation": "Immediate collection required",
}


def gateway_replies(analyze=None, validate=None, cleanup=None):
    replies = {
        analysis.ANALYZE_PROMPT: analyze or '{"status": "overflowing", "percentage": 95}',
        analysis.VALIDATE_PROMPT: validate or '{"is_valid": true, "is_garbage_bin_related": true,'
                                              ' "authenticity_score": 92}',
        analysis.CLEANUP_PROMPT: cleanup or '{"cleanliness_score": 90, "recommendation": "approve"}',
    }

    async def _vision_chat(system_prompt, user_text, image_base64, max_retries=3):
        return replies[system_prompt]
    return _vision_chat


async def file_complaint(client, headers, **overrides):
    resp = await client.post("/complaints", json={**COMPLAINT, **overrides}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH & IDENTITY
# ═══════════════════════════════════════════════════════════════════════════════

class TestHealthAndIdentity:
    async def test_health_endpoint(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    async def test_missing_token(self, client):
        resp = await client.get("/rewards/me")
        assert resp.status_code == 401

    async def test_invalid_token(self, client):
        resp = await client.get("/rewards/me", headers={"Authorization": "Bearer invalid.token.here"})
        assert resp.status_code == 401

    async def test_sync_grants_default_role(self, client, citizen_headers):
        resp = await client.post("/users/sync", json={"display_name": "Asha"}, headers=citizen_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == "citizen-1"
        assert data["email"] == "citizen1@example.com"
        assert data["role"] == "user"

    async def test_is_admin(self, client, citizen_headers, admin_headers):
        resp = await client.get("/auth/is-admin", headers=citizen_headers)
        assert resp.json() == {"is_admin": False}
        resp = await client.get("/auth/is-admin", headers=admin_headers)
        assert resp.json() == {"is_admin": True}


# ═══════════════════════════════════════════════════════════════════════════════
# AI ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestAnalyze:
    async def test_analyze_records_scan(self, client, citizen_headers, monkeypatch):
        monkeypatch.setattr(analysis, "vision_chat", gateway_replies())
        resp = await client.post("/analyze", json={"image_base64": "iVBORw0KGgo="},
                                 headers=citizen_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["assessment"]["priority"] == "critical"
        assert data["assessment"]["status"] == "overflowing"
        assert data["authenticity_warning"] is False

        scans = await client.get("/scans/me", headers=citizen_headers)
        assert len(scans.json()) == 1
        assert scans.json()[0]["fill_level"] == 95

    async def test_rejected_image_is_422(self, client, citizen_headers, monkeypatch):
        monkeypatch.setattr(analysis, "vision_chat", gateway_replies(
            validate='{"is_valid": false, "is_garbage_bin_related": false, "reason": "Stock photo"}'))
        resp = await client.post("/analyze", json={"image_base64": "iVBORw0KGgo="},
                                 headers=citizen_headers)
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "Stock photo"

    async def test_validate_endpoint(self, client, citizen_headers, monkeypatch):
        monkeypatch.setattr(analysis, "vision_chat", gateway_replies(
            validate='{"is_valid": true, "is_garbage_bin_related": true, "authenticity_score": 40}'))
        resp = await client.post("/images/validate", json={"image_base64": "/9j/4AAQ"},
                                 headers=citizen_headers)
        assert resp.status_code == 200
        assert resp.json()["blocks_submission"] is False
        assert resp.json()["authenticity_warning"] is True


# ═══════════════════════════════════════════════════════════════════════════════
# COMPLAINTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestComplaints:
    async def test_submit(self, client, citizen_headers):
        data = await file_complaint(client, citizen_headers)
        assert data["points_awarded"] == 50
        assert data["badges_earned"] == ["First Reporter"]
        assert data["complaint"]["priority"] == "critical"
        assert data["complaint"]["reporter_email"] == "citizen1@example.com"

    async def test_submit_without_coordinates_is_400(self, client, citizen_headers):
        resp = await client.post("/complaints", json={"fill_level": 80}, headers=citizen_headers)
        assert resp.status_code == 400
        assert "latitude" in resp.json()["detail"]

    async def test_track_is_public(self, client, citizen_headers):
        data = await file_complaint(client, citizen_headers)
        code = data["complaint"]["complaint_code"]
        resp = await client.get(f"/complaints/track/{code}")
        assert resp.status_code == 200
        assert resp.json()["complaint_status"] == "pending"
        assert "reporter_id" not in resp.json()

    async def test_track_unknown_code(self, client):
        resp = await client.get("/complaints/track/RVC-2026-000999ABCD")
        assert resp.status_code == 404

    async def test_owner_and_admin_can_read(self, client, citizen_headers, admin_headers):
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        assert (await client.get(f"/complaints/{cid}", headers=citizen_headers)).status_code == 200
        assert (await client.get(f"/complaints/{cid}", headers=admin_headers)).status_code == 200
        other = bearer("citizen-2")
        assert (await client.get(f"/complaints/{cid}", headers=other)).status_code == 403

    async def test_list_requires_admin(self, client, citizen_headers, admin_headers):
        await file_complaint(client, citizen_headers)
        assert (await client.get("/complaints", headers=citizen_headers)).status_code == 403
        resp = await client.get("/complaints", params={"priority": "critical"}, headers=admin_headers)
        assert resp.status_code == 200
        assert len(resp.json()) == 1

    async def test_mine(self, client, citizen_headers):
        await file_complaint(client, citizen_headers)
        await file_complaint(client, bearer("citizen-2"))
        resp = await client.get("/complaints/mine", headers=citizen_headers)
        assert len(resp.json()) == 1

    async def test_stats_are_public(self, client, citizen_headers):
        await file_complaint(client, citizen_headers)
        resp = await client.get("/complaints/stats")
        assert resp.status_code == 200
        assert resp.json()["total"] == 1
        assert resp.json()["area_stats"] == {"Sector 5": 1}

    async def test_admin_update_and_terminal_resolved(self, client, citizen_headers, admin_headers):
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        resp = await client.patch(f"/complaints/{cid}", json={"complaint_status": "resolved"},
                                  headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["resolved_at"] is not None
        resp = await client.patch(f"/complaints/{cid}", json={"complaint_status": "pending"},
                                  headers=admin_headers)
        assert resp.status_code == 409

    async def test_citizen_cannot_update(self, client, citizen_headers):
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        resp = await client.patch(f"/complaints/{cid}", json={"complaint_status": "resolved"},
                                  headers=citizen_headers)
        assert resp.status_code == 403

    async def test_admin_cannot_escalate(self, client, citizen_headers, admin_headers):
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        resp = await client.patch(f"/complaints/{cid}", json={"complaint_status": "escalated"},
                                  headers=admin_headers)
        assert resp.status_code == 409

    async def test_verify_cleanup(self, client, citizen_headers, admin_headers, monkeypatch):
        monkeypatch.setattr(analysis, "vision_chat", gateway_replies())
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        resp = await client.post(f"/complaints/{cid}/verify-cleanup",
                                 json={"image_base64": "/9j/4AAQ", "image_url": "https://img.example/a.jpg"},
                                 headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["verification"]["recommendation"] == "approve"
        assert data["complaint"]["cleanup_verified"] is False
        assert data["complaint"]["cleanup_image_url"] == "https://img.example/a.jpg"

    async def test_verify_cleanup_requires_admin(self, client, citizen_headers, monkeypatch):
        monkeypatch.setattr(analysis, "vision_chat", gateway_replies())
        cid = (await file_complaint(client, citizen_headers))["complaint"]["id"]
        resp = await client.post(f"/complaints/{cid}/verify-cleanup",
                                 json={"image_base64": "/9j/4AAQ"}, headers=citizen_headers)
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════════

class TestScheduledJobs:
    async def test_scheduler_key(self, client):
        resp = await client.post("/escalations/run", headers={"X-Scheduler-Key": "test-scheduler-key"})
        assert resp.status_code == 200
        assert resp.json()["checked"] == 0

    async def test_wrong_scheduler_key(self, client):
        resp = await client.post("/escalations/run", headers={"X-Scheduler-Key": "nope"})
        assert resp.status_code == 401

    async def test_admin_can_run(self, client, citizen_headers, admin_headers):
        await file_complaint(client, citizen_headers)
        resp = await client.post("/escalations/run", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["checked"] == 1
        assert (await client.post("/escalations/run", headers=citizen_headers)).status_code == 403

    async def test_retry_side_effects(self, client, admin_headers):
        resp = await client.post("/maintenance/retry-side-effects", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {"checked": 0, "applied": 0, "failed": 0}


# ═══════════════════════════════════════════════════════════════════════════════
# AREAS, REWARDS & ROLES
# ═══════════════════════════════════════════════════════════════════════════════

class TestAreasAndRewards:
    async def test_area_listing(self, client, citizen_headers):
        await file_complaint(client, citizen_headers, fill_level=80)
        resp = await client.get("/areas")
        assert resp.status_code == 200
        assert resp.json()[0]["area_name"] == "Sector 5"
        assert resp.json()[0]["overflow_count"] == 1
        resp = await client.get("/areas/Sector 5")
        assert resp.json()["avg_fill_level"] == 80
        assert (await client.get("/areas/Nowhere")).status_code == 404

    async def test_rewards(self, client, citizen_headers):
        resp = await client.get("/rewards/me", headers=citizen_headers)
        assert resp.json()["points"] == 0
        await file_complaint(client, citizen_headers)
        resp = await client.get("/rewards/me", headers=citizen_headers)
        assert resp.json()["points"] == 50
        board = await client.get("/rewards/leaderboard")
        assert board.json()[0]["user_id"] == "citizen-1"


class TestRoles:
    async def test_assign_and_remove(self, client, citizen_headers, admin_headers):
        await client.post("/users/sync", json={}, headers=citizen_headers)
        resp = await client.put("/admin/roles/citizen-1", json={"role": "admin"}, headers=admin_headers)
        assert resp.status_code == 200
        assert (await client.get("/auth/is-admin", headers=citizen_headers)).json()["is_admin"] is True

        listing = await client.get("/admin/roles", headers=admin_headers)
        assert any(u["user_id"] == "citizen-1" and u["role"] == "admin" for u in listing.json())

        resp = await client.delete("/admin/roles/citizen-1", headers=admin_headers)
        assert resp.status_code == 200

    async def test_cannot_remove_own_role(self, client, admin_headers, admin_id):
        resp = await client.delete(f"/admin/roles/{admin_id}", headers=admin_headers)
        assert resp.status_code == 400

    async def test_non_admin_cannot_assign(self, client, citizen_headers):
        resp = await client.put("/admin/roles/citizen-1", json={"role": "admin"}, headers=citizen_headers)
        assert resp.status_code == 403
