"""Tests for patient sessions and the admission gate."""

import uuid
from datetime import timedelta

import jwt
import pytest

from esiri.auth import auth_service
from esiri.auth.schemas import PatientIdentity, PortalIdentity, identity_key
from esiri.common.config import settings
from esiri.common.errors import Unauthorized
from esiri.common.utils.global_functions import ensure_utc, utcnow
from esiri.models.models import AuditLog, PatientSession, UserRole


class TestIdentity:
    """Test identity models and keys."""

    def test_identity_key_prefers_session(self):
        session_id = uuid.uuid4()
        assert identity_key(PatientIdentity(session_id=session_id)) == str(session_id)
        assert identity_key(None) == "anon"

    def test_portal_identity_rejects_patient_role(self):
        with pytest.raises(ValueError):
            PortalIdentity(role=UserRole.PATIENT, user_id=uuid.uuid4())


class TestPatientSessions:
    """Test patient session creation and extension."""

    async def test_create_session_returns_usable_token(self, client):
        response = await client.post("/auth/patient-session", json={"push_token": "device-token-1"})
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["patient_code"].startswith("ESR-")

        payload = jwt.decode(body["data"]["access_token"], settings.JWT_SECRET, algorithms=["HS256"])
        assert payload["role"] == "patient"
        assert payload["session_id"] == body["data"]["session_id"]

        headers = {"Authorization": f"Bearer {body['data']['access_token']}"}
        inbox = await client.get("/notifications", headers=headers)
        assert inbox.status_code == 200

    async def test_session_creation_is_rate_limited_by_ip(self, client, monkeypatch):
        monkeypatch.setattr(settings, "TRUSTED_PROXY_HOPS", 1)
        headers = {"X-Forwarded-For": "203.0.113.9"}
        statuses = [
            (await client.post("/auth/patient-session", json={}, headers=headers)).status_code
            for _ in range(6)
        ]
        assert statuses == [201] * 5 + [429]

        # Prepending a made-up address does not open a fresh bucket
        spoofed = await client.post(
            "/auth/patient-session", json={}, headers={"X-Forwarded-For": "198.51.100.1, 203.0.113.9"}
        )
        assert spoofed.status_code == 429

        other = await client.post("/auth/patient-session", json={}, headers={"X-Forwarded-For": "203.0.113.10"})
        assert other.status_code == 201

    async def test_extend_stacks_on_current_expiry(self, db, make_patient):
        patient = await make_patient(hours=10)
        now = utcnow()
        identity = PatientIdentity(session_id=patient.id)

        new_expiry, token = await auth_service.extend_session(db, identity, 24, now=now)

        assert new_expiry == ensure_utc(patient.expires_at) + timedelta(hours=24)
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        assert payload["session_id"] == str(patient.id)

    async def test_extend_lapsed_session_counts_from_now(self, db, make_patient):
        patient = await make_patient(hours=-2)
        now = utcnow()

        new_expiry, _ = await auth_service.extend_session(
            db, PatientIdentity(session_id=patient.id), 24, now=now
        )

        assert new_expiry == now + timedelta(hours=24)

    async def test_lapsed_session_cannot_extend_over_http(self, client, make_patient, as_patient):
        patient = await make_patient(hours=-2)
        response = await client.post(
            "/auth/extend-session", json={"extend_hours": 24}, headers=as_patient(patient)
        )
        assert response.status_code == 401

    async def test_extend_is_capped_at_max_session_days(self, db, make_patient):
        patient = await make_patient(hours=24 * 30 - 1)
        now = utcnow()

        new_expiry, _ = await auth_service.extend_session(
            db, PatientIdentity(session_id=patient.id), 72, now=now
        )

        assert new_expiry == now + timedelta(days=settings.MAX_SESSION_DAYS)

    async def test_extend_inactive_session_fails(self, db, make_patient):
        patient = await make_patient(active=False)
        with pytest.raises(Unauthorized):
            await auth_service.extend_session(db, PatientIdentity(session_id=patient.id), 1)

    async def test_extend_endpoint(self, client, make_patient, as_patient, rows):
        patient = await make_patient(hours=2)
        response = await client.post(
            "/auth/extend-session", json={"extend_hours": 5}, headers=as_patient(patient)
        )
        assert response.status_code == 200

        stored = (await rows(PatientSession, PatientSession.id == patient.id))[0]
        assert ensure_utc(stored.expires_at) == ensure_utc(patient.expires_at) + timedelta(hours=5)
        assert stored.last_extended_at is not None


class TestAdmission:
    """Test authentication, role checks and rate limiting on protected routes."""

    async def test_missing_header_is_unauthorized(self, client):
        response = await client.get("/notifications")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "UNAUTHORIZED", "message": "Authorization header is missing."},
        }
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_bad_token_is_unauthorized(self, client):
        response = await client.get("/notifications", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_expired_patient_session_is_rejected(self, client, db, make_patient, as_patient):
        patient = await make_patient()
        headers = as_patient(patient)
        patient.is_active = False
        await db.commit()

        response = await client.get("/notifications", headers=headers)
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Session is inactive or expired."

    async def test_wrong_role_is_forbidden(self, client, make_doctor, as_user):
        doctor = await make_doctor()
        response = await client.post(
            "/auth/extend-session", json={"extend_hours": 1}, headers=as_user(doctor.id)
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_sensitive_bucket_limits_sixth_attempt(self, client, make_patient, as_patient):
        patient = await make_patient()
        headers = as_patient(patient)
        responses = [
            await client.post("/auth/extend-session", json={"extend_hours": 1}, headers=headers)
            for _ in range(6)
        ]
        assert [r.status_code for r in responses] == [200] * 5 + [429]
        assert responses[-1].headers["retry-after"] == "60"
        assert responses[-1].json()["error"]["code"] == "RATE_LIMITED"

    async def test_errors_are_written_to_audit_log(self, client, rows):
        await client.get("/notifications")
        entries = await rows(AuditLog, AuditLog.action == "unauthorized")
        assert len(entries) == 1
        assert entries[0].function_name == "get_notifications"
        assert entries[0].level == "warn"


class TestCronSecret:
    """Test the shared-secret check on scheduler endpoints."""

    async def test_wrong_secret_rejected(self, client):
        response = await client.post("/cron/missed-appointments", headers={"X-Cron-Secret": "nope"})
        assert response.status_code == 401

    async def test_missing_secret_rejected(self, client):
        response = await client.post("/cron/lift-suspensions")
        assert response.status_code == 401

    async def test_valid_secret_accepted(self, client, cron_headers):
        response = await client.post("/cron/missed-appointments", headers=cron_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"missed_count": 0}
