"""Tests for appointments, the missed sweep, reminders and rescheduling."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from esiri.auth.schemas import DoctorIdentity, PatientIdentity
from esiri.common.errors import Conflict, Forbidden, ValidationError
from esiri.common.utils.global_functions import ensure_utc, utcnow
from esiri.models.models import (
    Appointment, AppointmentStatus, ConsultationType, Notification, ServiceType,
)
from esiri.modules.appointments import appointments_service as service
from esiri.modules.appointments.schemas import AppointmentCreateRequest, AppointmentRescheduleRequest


@pytest.fixture
def make_appointment(db):
    async def _make_appointment(doctor, patient, scheduled_at, status=AppointmentStatus.CONFIRMED, **values):
        appointment = Appointment(
            id=uuid.uuid4(),
            doctor_id=doctor.id,
            patient_session_id=patient.id,
            scheduled_at=scheduled_at,
            grace_period_minutes=values.pop("grace_period_minutes", 5),
            duration_minutes=values.pop("duration_minutes", 15),
            service_type=doctor.service_type,
            consultation_type=ConsultationType.VIDEO,
            status=status,
            reminders_sent=values.pop("reminders_sent", []),
            **values,
        )
        db.add(appointment)
        await db.commit()
        return appointment
    return _make_appointment


class TestBooking:
    """Test booking, confirming and cancelling."""

    async def test_book_creates_booked_and_notifies_doctor(self, db, make_doctor, make_patient, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        request = AppointmentCreateRequest(doctor_id=doctor.id, scheduled_at=utcnow() + timedelta(days=1))

        appointment = await service.book_appointment(db, PatientIdentity(session_id=patient.id), request)

        assert appointment.status is AppointmentStatus.BOOKED
        assert appointment.service_type is ServiceType.NURSE
        notes = await rows(Notification, Notification.recipient_id == doctor.id)
        assert [n.title for n in notes] == ["New Appointment"]

    async def test_book_in_past_rejected(self, db, make_doctor, make_patient):
        doctor = await make_doctor()
        patient = await make_patient()
        request = AppointmentCreateRequest(doctor_id=doctor.id, scheduled_at=utcnow() - timedelta(minutes=1))
        with pytest.raises(ValidationError):
            await service.book_appointment(db, PatientIdentity(session_id=patient.id), request)

    def test_naive_times_are_treated_as_utc(self):
        request = AppointmentCreateRequest(doctor_id=uuid.uuid4(), scheduled_at=datetime(2030, 1, 1, 9, 0))
        assert request.scheduled_at == datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)

    async def test_overlapping_slot_conflicts(self, db, make_doctor, make_patient):
        doctor = await make_doctor()
        first = await make_patient()
        second = await make_patient()
        start = utcnow() + timedelta(days=2)

        await service.book_appointment(
            db, PatientIdentity(session_id=first.id),
            AppointmentCreateRequest(doctor_id=doctor.id, scheduled_at=start, duration_minutes=30),
        )
        with pytest.raises(Conflict):
            await service.book_appointment(
                db, PatientIdentity(session_id=second.id),
                AppointmentCreateRequest(doctor_id=doctor.id, scheduled_at=start + timedelta(minutes=20)),
            )

        # Back-to-back is fine
        later = await service.book_appointment(
            db, PatientIdentity(session_id=second.id),
            AppointmentCreateRequest(doctor_id=doctor.id, scheduled_at=start + timedelta(minutes=30)),
        )
        assert later.status is AppointmentStatus.BOOKED

    async def test_confirm_then_cancel(self, db, make_doctor, make_patient, make_appointment, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        appointment = await make_appointment(
            doctor, patient, utcnow() + timedelta(days=1), status=AppointmentStatus.BOOKED
        )

        confirmed = await service.confirm_appointment(db, DoctorIdentity(user_id=doctor.id), appointment.id)
        assert confirmed.status is AppointmentStatus.CONFIRMED

        cancelled = await service.cancel_appointment(
            db, PatientIdentity(session_id=patient.id), appointment.id, "Feeling better"
        )
        assert cancelled.status is AppointmentStatus.CANCELLED
        assert cancelled.cancellation_reason == "Feeling better"

        doctor_notes = await rows(Notification, Notification.recipient_id == doctor.id)
        assert [n.title for n in doctor_notes] == ["Appointment Cancelled"]

        with pytest.raises(Conflict):
            await service.confirm_appointment(db, DoctorIdentity(user_id=doctor.id), appointment.id)

    async def test_other_doctor_cannot_confirm(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        patient = await make_patient()
        appointment = await make_appointment(
            doctor, patient, utcnow() + timedelta(days=1), status=AppointmentStatus.BOOKED
        )
        with pytest.raises(Forbidden):
            await service.confirm_appointment(db, DoctorIdentity(user_id=uuid.uuid4()), appointment.id)

    async def test_list_is_scoped_to_caller(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        mine = await make_patient()
        theirs = await make_patient()
        await make_appointment(doctor, mine, utcnow() + timedelta(days=1))
        await make_appointment(doctor, theirs, utcnow() + timedelta(days=2))

        appointments, total = await service.list_appointments(db, PatientIdentity(session_id=mine.id))
        assert total == 1
        assert appointments[0].patient_session_id == mine.id

        appointments, total = await service.list_appointments(db, DoctorIdentity(user_id=doctor.id))
        assert total == 2


class TestMissedSweep:
    """Test marking appointments missed after the grace period."""

    async def test_marks_overdue_once_and_notifies_both(self, db, make_doctor, make_patient, make_appointment, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        now = utcnow()
        overdue = await make_appointment(doctor, patient, now - timedelta(minutes=10))
        within_grace = await make_appointment(doctor, patient, now - timedelta(minutes=3))
        booked_overdue = await make_appointment(
            doctor, patient, now - timedelta(minutes=30), status=AppointmentStatus.BOOKED
        )

        assert await service.mark_missed_appointments(db, now=now) == 2
        assert await service.mark_missed_appointments(db, now=now) == 0

        missed = {a.id for a in await rows(Appointment, Appointment.status == AppointmentStatus.MISSED)}
        assert missed == {overdue.id, booked_overdue.id}
        assert (await rows(Appointment, Appointment.id == within_grace.id))[0].status is AppointmentStatus.CONFIRMED

        notes = await rows(Notification, Notification.title == "Missed Appointment")
        assert len(notes) == 4
        assert {n.recipient_id for n in notes} == {doctor.id, patient.id}

    async def test_concurrent_sweeps_mark_once(
        self, session_factory, make_doctor, make_patient, make_appointment, rows
    ):
        doctor = await make_doctor()
        patient = await make_patient()
        now = utcnow()
        overdue = await make_appointment(doctor, patient, now - timedelta(minutes=10))

        async def sweep():
            async with session_factory() as session:
                return await service.mark_missed_appointments(session, now=now)

        results = await asyncio.gather(*(sweep() for _ in range(3)))

        assert sum(results) == 1
        assert (await rows(Appointment, Appointment.id == overdue.id))[0].status is AppointmentStatus.MISSED
        notes = await rows(Notification, Notification.title == "Missed Appointment")
        assert len(notes) == 2
        assert {n.recipient_id for n in notes} == {doctor.id, patient.id}

    async def test_cancelled_appointments_are_ignored(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        patient = await make_patient()
        await make_appointment(
            doctor, patient, utcnow() - timedelta(hours=1), status=AppointmentStatus.CANCELLED
        )
        assert await service.mark_missed_appointments(db) == 0

    async def test_cron_endpoint(self, client, make_doctor, make_patient, make_appointment, cron_headers):
        doctor = await make_doctor()
        patient = await make_patient()
        await make_appointment(doctor, patient, utcnow() - timedelta(minutes=20))

        response = await client.post("/cron/missed-appointments", headers=cron_headers)
        assert response.status_code == 200
        assert response.json()["data"]["missed_count"] == 1


class TestReminders:
    """Test the reminder windows."""

    async def test_each_window_sent_once(self, db, make_doctor, make_patient, make_appointment, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        now = utcnow()
        in_one_hour = await make_appointment(doctor, patient, now + timedelta(hours=1, minutes=2))
        await make_appointment(doctor, patient, now + timedelta(hours=5))
        await make_appointment(
            doctor, patient, now + timedelta(minutes=15), status=AppointmentStatus.BOOKED
        )

        sent = await service.send_appointment_reminders(db, now=now)
        assert sent == {"24h": 0, "1h": 1, "15min": 0}

        again = await service.send_appointment_reminders(db, now=now)
        assert again == {"24h": 0, "1h": 0, "15min": 0}

        stored = (await rows(Appointment, Appointment.id == in_one_hour.id))[0]
        assert stored.reminders_sent == ["1h"]
        notes = await rows(Notification, Notification.title == "Appointment Reminder")
        assert {n.recipient_id for n in notes} == {doctor.id, patient.id}
        assert len(notes) == 2

    async def test_later_window_appends_label(self, db, make_doctor, make_patient, make_appointment, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        now = utcnow()
        appointment = await make_appointment(
            doctor, patient, now + timedelta(minutes=14), reminders_sent=["24h", "1h"]
        )

        sent = await service.send_appointment_reminders(db, now=now)
        assert sent["15min"] == 1
        stored = (await rows(Appointment, Appointment.id == appointment.id))[0]
        assert stored.reminders_sent == ["24h", "1h", "15min"]


class TestReschedule:
    """Test superseding an appointment with a new one."""

    async def test_missed_appointment_rescheduled(self, db, make_doctor, make_patient, make_appointment, rows):
        doctor = await make_doctor()
        patient = await make_patient()
        original_time = datetime(2025, 1, 10, 10, 0, tzinfo=timezone.utc)
        a1 = await make_appointment(doctor, patient, original_time)

        assert await service.mark_missed_appointments(db, now=original_time + timedelta(minutes=6)) == 1

        new_time = datetime(2025, 1, 12, 10, 0, tzinfo=timezone.utc)
        original_id, a2 = await service.reschedule_appointment(
            db,
            DoctorIdentity(user_id=doctor.id),
            a1.id,
            AppointmentRescheduleRequest(new_scheduled_at=new_time, reason="Doctor was unavailable"),
            now=original_time + timedelta(hours=1),
        )

        assert original_id == a1.id
        assert a2.status is AppointmentStatus.CONFIRMED
        assert a2.rescheduled_from == a1.id
        assert ensure_utc(a2.scheduled_at) == new_time

        stored_a1 = (await rows(Appointment, Appointment.id == a1.id))[0]
        assert stored_a1.status is AppointmentStatus.RESCHEDULED
        assert stored_a1.reschedule_reason == "Doctor was unavailable"

        notes = await rows(Notification, Notification.title == "Appointment Rescheduled")
        assert len(notes) == 1
        assert notes[0].recipient_id == patient.id
        assert notes[0].data["new_appointment_id"] == str(a2.id)

    async def test_second_reschedule_of_same_original_conflicts(
        self, db, make_doctor, make_patient, make_appointment, rows
    ):
        doctor = await make_doctor()
        patient = await make_patient()
        a1 = await make_appointment(doctor, patient, utcnow() + timedelta(days=1))
        identity = DoctorIdentity(user_id=doctor.id)
        request = AppointmentRescheduleRequest(new_scheduled_at=utcnow() + timedelta(days=3))

        await service.reschedule_appointment(db, identity, a1.id, request)
        later = AppointmentRescheduleRequest(new_scheduled_at=utcnow() + timedelta(days=4))
        with pytest.raises(Conflict):
            await service.reschedule_appointment(db, identity, a1.id, later)

        assert len(await rows(Appointment, Appointment.rescheduled_from == a1.id)) == 1

    async def test_reschedule_onto_taken_slot_conflicts(
        self, db, make_doctor, make_patient, make_appointment, rows
    ):
        doctor = await make_doctor()
        patient = await make_patient()
        other_patient = await make_patient()
        busy_at = utcnow() + timedelta(days=2)
        await make_appointment(doctor, other_patient, busy_at, status=AppointmentStatus.BOOKED)
        a1 = await make_appointment(doctor, patient, utcnow() + timedelta(days=1))

        with pytest.raises(Conflict):
            await service.reschedule_appointment(
                db,
                DoctorIdentity(user_id=doctor.id),
                a1.id,
                AppointmentRescheduleRequest(new_scheduled_at=busy_at + timedelta(minutes=10)),
            )

        stored_a1 = (await rows(Appointment, Appointment.id == a1.id))[0]
        assert stored_a1.status is AppointmentStatus.CONFIRMED
        assert await rows(Appointment, Appointment.rescheduled_from == a1.id) == []

    async def test_reschedule_may_overlap_its_own_slot(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        patient = await make_patient()
        start = utcnow() + timedelta(days=1)
        a1 = await make_appointment(doctor, patient, start)

        _, a2 = await service.reschedule_appointment(
            db,
            DoctorIdentity(user_id=doctor.id),
            a1.id,
            AppointmentRescheduleRequest(new_scheduled_at=start + timedelta(minutes=5)),
        )
        assert a2.status is AppointmentStatus.CONFIRMED

    async def test_only_owning_doctor_may_reschedule(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        patient = await make_patient()
        a1 = await make_appointment(doctor, patient, utcnow() + timedelta(days=1))
        request = AppointmentRescheduleRequest(new_scheduled_at=utcnow() + timedelta(days=2))
        with pytest.raises(Forbidden):
            await service.reschedule_appointment(db, DoctorIdentity(user_id=uuid.uuid4()), a1.id, request)

    async def test_new_time_must_be_future(self, db, make_doctor, make_patient, make_appointment):
        doctor = await make_doctor()
        patient = await make_patient()
        a1 = await make_appointment(doctor, patient, utcnow() + timedelta(days=1))
        request = AppointmentRescheduleRequest(new_scheduled_at=utcnow() - timedelta(hours=1))
        with pytest.raises(ValidationError):
            await service.reschedule_appointment(db, DoctorIdentity(user_id=doctor.id), a1.id, request)

    async def test_reschedule_over_http(self, client, make_doctor, make_patient, make_appointment, as_user):
        doctor = await make_doctor()
        patient = await make_patient()
        a1 = await make_appointment(doctor, patient, utcnow() + timedelta(days=1))
        new_time = (utcnow() + timedelta(days=4)).isoformat()

        response = await client.post(
            f"/appointments/{a1.id}/reschedule",
            json={"new_scheduled_at": new_time, "reason": "Clinic closed"},
            headers=as_user(doctor.id),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["original_appointment_id"] == str(a1.id)
        assert data["new_appointment"]["status"] == "confirmed"
        assert data["new_appointment"]["rescheduled_from"] == str(a1.id)


class TestAppointmentEndpoints:
    """Test booking and listing over HTTP."""

    async def test_book_and_list(self, client, make_doctor, make_patient, as_patient, as_user):
        doctor = await make_doctor()
        patient = await make_patient()
        scheduled = (utcnow() + timedelta(days=1)).isoformat()

        response = await client.post(
            "/appointments",
            json={"doctor_id": str(doctor.id), "scheduled_at": scheduled, "chief_complaint": "Follow-up"},
            headers=as_patient(patient),
        )
        assert response.status_code == 201
        appointment_id = response.json()["data"]["id"]

        confirm = await client.post(f"/appointments/{appointment_id}/confirm", headers=as_user(doctor.id))
        assert confirm.json()["data"]["status"] == "confirmed"

        listing = await client.get("/appointments?status=confirmed", headers=as_patient(patient))
        assert listing.status_code == 200
        assert listing.json()["data"]["total"] == 1
