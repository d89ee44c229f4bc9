"""Tests for consultation video tokens."""

import uuid

import jwt
import pytest

from esiri.common.config import settings
from esiri.models.models import Consultation, ConsultationStatus, ConsultationType, ServiceType


@pytest.fixture
def make_consultation(db):
    async def _make_consultation(patient, doctor, status=ConsultationStatus.ACTIVE):
        consultation = Consultation(
            id=uuid.uuid4(),
            patient_session_id=patient.id,
            doctor_id=doctor.id,
            service_type=ServiceType.NURSE,
            consultation_type=ConsultationType.VIDEO,
            status=status,
            chief_complaint="Dizziness when standing up quickly",
        )
        db.add(consultation)
        await db.commit()
        return consultation
    return _make_consultation


def decode(token):
    return jwt.decode(token, settings.VIDEOSDK_SECRET, algorithms=["HS256"])


class TestVideoToken:
    """Test video token issuance."""

    async def test_participants_share_room_with_role_permissions(
        self, client, make_patient, make_doctor, make_consultation, as_patient, as_user, rows
    ):
        patient = await make_patient()
        doctor = await make_doctor()
        consultation = await make_consultation(patient, doctor)
        body = {"consultation_id": str(consultation.id)}

        patient_response = await client.post("/video/token", json=body, headers=as_patient(patient))
        doctor_response = await client.post("/video/token", json=body, headers=as_user(doctor.id))

        assert patient_response.status_code == 200
        patient_data = patient_response.json()["data"]
        doctor_data = doctor_response.json()["data"]
        assert patient_data["room_id"] == doctor_data["room_id"]
        assert patient_data["room_id"].startswith("mock-room-")

        patient_claims = decode(patient_data["token"])
        assert patient_claims["permissions"] == ["allow_join"]
        assert patient_claims["apikey"] == settings.VIDEOSDK_API_KEY
        assert patient_claims["version"] == 2
        assert patient_claims["roomId"] == patient_data["room_id"]
        assert patient_claims["exp"] - patient_claims["iat"] == settings.VIDEO_TOKEN_TTL_MINUTES * 60

        assert decode(doctor_data["token"])["permissions"] == ["allow_join", "allow_mod"]

        stored = (await rows(Consultation, Consultation.id == consultation.id))[0]
        assert stored.video_room_id == patient_data["room_id"]

    async def test_pending_consultation_has_no_video(self, client, make_patient, make_doctor, make_consultation, as_patient):
        patient = await make_patient()
        doctor = await make_doctor()
        consultation = await make_consultation(patient, doctor, status=ConsultationStatus.PENDING)

        response = await client.post(
            "/video/token", json={"consultation_id": str(consultation.id)}, headers=as_patient(patient)
        )
        assert response.status_code == 400

    async def test_outsider_rejected(self, client, make_patient, make_doctor, make_consultation, as_user):
        patient = await make_patient()
        doctor = await make_doctor()
        consultation = await make_consultation(patient, doctor)

        response = await client.post(
            "/video/token", json={"consultation_id": str(consultation.id)}, headers=as_user(uuid.uuid4())
        )
        assert response.status_code == 403
