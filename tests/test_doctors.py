"""Tests for doctor discovery, eligibility and suspension expiry."""

import uuid
from datetime import datetime, timedelta, timezone

from esiri.common.utils.global_functions import ensure_utc, utcnow
from esiri.models.models import (
    Appointment, AppointmentStatus, Consultation, ConsultationStatus, ConsultationType,
    DoctorProfile, Notification, ServiceType,
)
from esiri.modules.doctors import doctors_service as service


def parse_time(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class TestVerifiedDoctor:
    """Test get_verified_doctor filters."""

    async def test_filters_on_verification_and_tier(self, db, make_doctor):
        doctor = await make_doctor()
        unverified = await make_doctor(verified=False)

        assert (await service.get_verified_doctor(db, doctor.id)).id == doctor.id
        assert await service.get_verified_doctor(db, doctor.id, ServiceType.GP) is None
        assert await service.get_verified_doctor(db, unverified.id) is None


class TestLiftSuspensions:
    """Test lifting expired suspensions."""

    async def test_lifts_expired_only(self, db, make_doctor, rows):
        now = utcnow()
        expired = await make_doctor(available=False, suspended_until=now - timedelta(minutes=1))
        ongoing = await make_doctor(available=False, suspended_until=now + timedelta(days=1))

        assert await service.lift_expired_suspensions(db, now=now) == 1
        assert await service.lift_expired_suspensions(db, now=now) == 0

        doctors = {d.id: d for d in await rows(DoctorProfile)}
        assert doctors[expired.id].is_available is True
        assert doctors[expired.id].suspended_until is None
        assert doctors[ongoing.id].is_available is False

        notes = await rows(Notification, Notification.title == "Suspension Lifted")
        assert [n.recipient_id for n in notes] == [expired.id]

    async def test_cron_endpoint(self, client, make_doctor, cron_headers):
        await make_doctor(available=False, suspended_until=utcnow() - timedelta(hours=1))

        response = await client.post("/cron/lift-suspensions", headers=cron_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"lifted_count": 1}


class TestDoctorDiscovery:
    """Test listing doctors and their booked times."""

    async def test_lists_verified_doctors_of_tier(self, client, make_doctor, make_patient, as_patient):
        patient = await make_patient()
        await make_doctor(full_name="Dr. Otieno")
        await make_doctor(full_name="Dr. Achieng", available=False)
        await make_doctor(full_name="Dr. Unverified", verified=False)
        await make_doctor(full_name="Dr. Gp", service_type=ServiceType.GP)

        response = await client.get("/doctors?service_type=nurse", headers=as_patient(patient))
        data = response.json()["data"]
        assert data["total"] == 2
        assert [d["full_name"] for d in data["doctors"]] == ["Dr. Achieng", "Dr. Otieno"]

        available = await client.get("/doctors?service_type=nurse&available_only=true", headers=as_patient(patient))
        assert [d["full_name"] for d in available.json()["data"]["doctors"]] == ["Dr. Otieno"]

    async def test_service_type_required(self, client, make_patient, as_patient):
        patient = await make_patient()
        response = await client.get("/doctors", headers=as_patient(patient))
        assert response.status_code == 400

    async def test_slots_show_booked_times_for_the_day(self, client, db, make_doctor, make_patient, as_patient):
        doctor = await make_doctor()
        patient = await make_patient()
        day_start = datetime(2030, 3, 4, tzinfo=timezone.utc)
        for offset_hours, status in (
            (9, AppointmentStatus.CONFIRMED),
            (11, AppointmentStatus.CANCELLED),
            (14, AppointmentStatus.BOOKED),
            (30, AppointmentStatus.BOOKED),
        ):
            db.add(Appointment(
                doctor_id=doctor.id,
                patient_session_id=patient.id,
                scheduled_at=day_start + timedelta(hours=offset_hours),
                duration_minutes=30,
                service_type=doctor.service_type,
                status=status,
                reminders_sent=[],
            ))
        db.add(Consultation(
            patient_session_id=patient.id,
            doctor_id=doctor.id,
            service_type=doctor.service_type,
            consultation_type=ConsultationType.CHAT,
            status=ConsultationStatus.ACTIVE,
            chief_complaint="Persistent cough for a week",
        ))
        await db.commit()

        response = await client.get(f"/doctors/{doctor.id}/slots?date=2030-03-04", headers=as_patient(patient))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["date"] == "2030-03-04"
        assert [slot["status"] for slot in data["booked"]] == ["confirmed", "booked"]
        first_start = parse_time(data["booked"][0]["scheduled_at"])
        first_end = parse_time(data["booked"][0]["ends_at"])
        assert ensure_utc(first_start) == day_start + timedelta(hours=9)
        assert first_end - first_start == timedelta(minutes=30)
        assert data["open_consultations"] == 1
        assert data["remaining_capacity"] == service.CONSULTATION_CAPACITY - 1

    async def test_slots_for_unknown_doctor(self, client, make_patient, as_patient):
        patient = await make_patient()
        response = await client.get(f"/doctors/{uuid.uuid4()}/slots?date=2030-03-04", headers=as_patient(patient))
        assert response.status_code == 404
