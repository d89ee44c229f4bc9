# esiri/modules/appointments/appointments_service.py
"""Appointments service: booking, rescheduling and the time-driven sweeps."""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import DoctorIdentity, Identity, PatientIdentity
from esiri.common.database.transitions import transition
from esiri.common.errors import Conflict, Forbidden, NotFound, ValidationError
from esiri.common.utils.global_functions import ensure_utc, utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import Appointment, AppointmentStatus
from esiri.modules.doctors.doctors_service import get_verified_doctor
from esiri.modules.notifications.notifications_service import NotificationTarget, dispatch, notify

from .schemas import AppointmentCreateRequest, AppointmentRescheduleRequest

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = (
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)
MISSABLE_STATUSES = (AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED)
CANCELLABLE_STATUSES = (AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED)
RESCHEDULABLE_STATUSES = (
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.MISSED,
)

REMINDER_WINDOWS = (
    ("24h", timedelta(hours=24)),
    ("1h", timedelta(hours=1)),
    ("15min", timedelta(minutes=15)),
)
REMINDER_TOLERANCE = timedelta(minutes=5)
MAX_DURATION = timedelta(minutes=120)


def _format_time(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%d %H:%M UTC")


async def _load(session: AsyncSession, appointment_id: UUID) -> Appointment:
    appointment = await session.get(Appointment, appointment_id, populate_existing=True)
    if appointment is None:
        raise NotFound(GlobalMessages.APPOINTMENT_NOT_FOUND)
    return appointment


def _is_patient_of(identity: Identity, appointment: Appointment) -> bool:
    return isinstance(identity, PatientIdentity) and identity.session_id == appointment.patient_session_id


def _is_doctor_of(identity: Identity, appointment: Appointment) -> bool:
    return isinstance(identity, DoctorIdentity) and identity.user_id == appointment.doctor_id


# ============================================================================
# BOOKING
# ============================================================================

async def _ensure_slot_free(
    session: AsyncSession,
    doctor_id: UUID,
    start: datetime,
    duration_minutes: int,
    exclude_id: Optional[UUID] = None,
) -> None:
    end = start + timedelta(minutes=duration_minutes)
    query = select(Appointment).where(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(BLOCKING_STATUSES),
        Appointment.scheduled_at > start - MAX_DURATION,
        Appointment.scheduled_at < end,
    )
    if exclude_id is not None:
        query = query.where(Appointment.id != exclude_id)
    result = await session.execute(query)
    for other in result.scalars().all():
        other_start = ensure_utc(other.scheduled_at)
        other_end = other_start + timedelta(minutes=other.duration_minutes)
        if other_start < end and start < other_end:
            raise Conflict(GlobalMessages.APPOINTMENT_SLOT_TAKEN)


async def book_appointment(
    session: AsyncSession,
    identity: PatientIdentity,
    request: AppointmentCreateRequest,
    background_tasks: Optional[BackgroundTasks] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    now = now or utcnow()
    if request.scheduled_at <= now:
        raise ValidationError(GlobalMessages.APPOINTMENT_IN_PAST)

    doctor = await get_verified_doctor(session, request.doctor_id)
    if doctor is None:
        raise ValidationError(GlobalMessages.DOCTOR_NOT_ELIGIBLE)

    await _ensure_slot_free(session, doctor.id, request.scheduled_at, request.duration_minutes)

    appointment = Appointment(
        doctor_id=doctor.id,
        patient_session_id=identity.session_id,
        scheduled_at=request.scheduled_at,
        grace_period_minutes=request.grace_period_minutes,
        duration_minutes=request.duration_minutes,
        service_type=doctor.service_type,
        consultation_type=request.consultation_type,
        chief_complaint=request.chief_complaint,
        status=AppointmentStatus.BOOKED,
        reminders_sent=[],
    )
    session.add(appointment)
    await session.commit()

    await log_event(
        "book_appointment",
        "appointment_booked",
        identity=identity,
        metadata={"appointment_id": str(appointment.id), "doctor_id": str(doctor.id)},
    )
    await dispatch(
        background_tasks,
        NotificationTarget.user(doctor.id),
        "New Appointment",
        f"A patient booked an appointment for {_format_time(appointment.scheduled_at)}.",
        "appointment_booked",
        {"appointment_id": str(appointment.id)},
    )
    return appointment


async def confirm_appointment(
    session: AsyncSession,
    identity: DoctorIdentity,
    appointment_id: UUID,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    appointment = await _load(session, appointment_id)
    if not _is_doctor_of(identity, appointment):
        raise Forbidden(GlobalMessages.APPOINTMENT_NOT_OWNED)

    applied = await transition(
        session, Appointment, appointment_id, [AppointmentStatus.BOOKED], AppointmentStatus.CONFIRMED
    )
    if not applied:
        await session.rollback()
        raise Conflict(GlobalMessages.APPOINTMENT_STATE_CHANGED)
    await session.commit()

    appointment = await _load(session, appointment_id)
    await dispatch(
        background_tasks,
        NotificationTarget.session(appointment.patient_session_id),
        "Appointment Confirmed",
        f"Your appointment on {_format_time(appointment.scheduled_at)} is confirmed.",
        "appointment_confirmed",
        {"appointment_id": str(appointment.id)},
    )
    return appointment


async def cancel_appointment(
    session: AsyncSession,
    identity: Identity,
    appointment_id: UUID,
    reason: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    appointment = await _load(session, appointment_id)
    by_patient = _is_patient_of(identity, appointment)
    if not (by_patient or _is_doctor_of(identity, appointment)):
        raise Forbidden(GlobalMessages.APPOINTMENT_NOT_OWNED)

    applied = await transition(
        session, Appointment, appointment_id, CANCELLABLE_STATUSES, AppointmentStatus.CANCELLED,
        cancellation_reason=reason,
    )
    if not applied:
        await session.rollback()
        raise Conflict(GlobalMessages.APPOINTMENT_STATE_CHANGED)
    await session.commit()

    appointment = await _load(session, appointment_id)
    target = (
        NotificationTarget.user(appointment.doctor_id)
        if by_patient
        else NotificationTarget.session(appointment.patient_session_id)
    )
    body = f"The appointment on {_format_time(appointment.scheduled_at)} was cancelled."
    if reason:
        body += f" Reason: {reason}"
    await dispatch(
        background_tasks,
        target,
        "Appointment Cancelled",
        body,
        "appointment_cancelled",
        {"appointment_id": str(appointment.id)},
    )
    return appointment


async def list_appointments(
    session: AsyncSession,
    identity: Identity,
    status: Optional[AppointmentStatus] = None,
    limit: int = 50,
) -> Tuple[List[Appointment], int]:
    """Appointments belonging to the caller, newest first."""
    if isinstance(identity, PatientIdentity):
        query = select(Appointment).where(Appointment.patient_session_id == identity.session_id)
    elif isinstance(identity, DoctorIdentity):
        query = select(Appointment).where(Appointment.doctor_id == identity.user_id)
    else:
        raise Forbidden(GlobalMessages.INSUFFICIENT_ROLE)

    if status is not None:
        query = query.where(Appointment.status == status)

    total_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await session.execute(
        query.order_by(desc(Appointment.scheduled_at)).limit(min(limit, 100))
    )
    return list(result.scalars().all()), total


# ============================================================================
# RESCHEDULE
# ============================================================================

async def reschedule_appointment(
    session: AsyncSession,
    identity: DoctorIdentity,
    appointment_id: UUID,
    request: AppointmentRescheduleRequest,
    background_tasks: Optional[BackgroundTasks] = None,
    now: Optional[datetime] = None,
) -> Tuple[UUID, Appointment]:
    """
    Supersede an appointment with a new confirmed one at another time.

    The original is moved to RESCHEDULED and the replacement inserted in the
    same transaction, so either both changes are visible or neither is.
    """
    now = now or utcnow()
    original = await _load(session, appointment_id)
    if not _is_doctor_of(identity, original):
        raise Forbidden(GlobalMessages.APPOINTMENT_NOT_OWNED)
    if request.new_scheduled_at <= now:
        raise ValidationError(GlobalMessages.APPOINTMENT_IN_PAST)

    await _ensure_slot_free(
        session, original.doctor_id, request.new_scheduled_at, original.duration_minutes,
        exclude_id=original.id,
    )

    replacement = Appointment(
        doctor_id=original.doctor_id,
        patient_session_id=original.patient_session_id,
        scheduled_at=request.new_scheduled_at,
        grace_period_minutes=original.grace_period_minutes,
        duration_minutes=original.duration_minutes,
        service_type=original.service_type,
        consultation_type=original.consultation_type,
        chief_complaint=original.chief_complaint,
        status=AppointmentStatus.CONFIRMED,
        reminders_sent=[],
        rescheduled_from=original.id,
    )

    applied = await transition(
        session, Appointment, appointment_id, RESCHEDULABLE_STATUSES, AppointmentStatus.RESCHEDULED,
        reschedule_reason=request.reason,
    )
    if not applied:
        await session.rollback()
        raise Conflict(GlobalMessages.APPOINTMENT_STATE_CHANGED)

    session.add(replacement)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await log_event(
        "reschedule_appointment",
        "appointment_rescheduled",
        identity=identity,
        metadata={"appointment_id": str(appointment_id), "new_appointment_id": str(replacement.id)},
    )

    body = f"Your appointment has been moved to {_format_time(replacement.scheduled_at)}."
    if request.reason:
        body += f" Reason: {request.reason}"
    await dispatch(
        background_tasks,
        NotificationTarget.session(replacement.patient_session_id),
        "Appointment Rescheduled",
        body,
        "appointment_rescheduled",
        {
            "original_appointment_id": str(appointment_id),
            "new_appointment_id": str(replacement.id),
            "new_scheduled_at": ensure_utc(replacement.scheduled_at).isoformat(),
        },
    )
    return appointment_id, replacement


# ============================================================================
# TIME-DRIVEN SWEEPS
# ============================================================================

async def mark_missed_appointments(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Mark booked or confirmed appointments missed once their grace period has
    passed, notifying both parties. Safe to run concurrently: each row is moved
    by a conditional update and only the run that moves it sends notifications.
    """
    now = now or utcnow()
    result = await session.execute(
        select(Appointment).where(
            Appointment.status.in_(MISSABLE_STATUSES),
            Appointment.scheduled_at <= now,
        )
    )
    overdue = [
        (a.id, a.doctor_id, a.patient_session_id, ensure_utc(a.scheduled_at))
        for a in result.scalars().all()
        if now >= ensure_utc(a.scheduled_at) + timedelta(minutes=a.grace_period_minutes)
    ]

    missed_count = 0
    for appointment_id, doctor_id, patient_session_id, scheduled_at in overdue:
        try:
            applied = await transition(
                session, Appointment, appointment_id, MISSABLE_STATUSES, AppointmentStatus.MISSED,
                missed_at=now,
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Failed to mark appointment {appointment_id} missed: {e}")
            continue

        if not applied:
            continue
        missed_count += 1

        metadata = {"appointment_id": str(appointment_id)}
        when = _format_time(scheduled_at)
        await notify(
            NotificationTarget.user(doctor_id),
            "Missed Appointment",
            f"The appointment scheduled for {when} was marked as missed. You can reschedule it.",
            "appointment_missed",
            metadata,
        )
        await notify(
            NotificationTarget.session(patient_session_id),
            "Missed Appointment",
            f"Your appointment scheduled for {when} was missed. Your doctor may reschedule it.",
            "appointment_missed",
            metadata,
        )

    if missed_count:
        await log_event(
            "mark_missed_appointments", "appointments_missed", metadata={"count": missed_count}
        )
    return missed_count


async def send_appointment_reminders(session: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Send 24h, 1h and 15min reminders for confirmed appointments.

    The window label is appended to reminders_sent only after both
    notifications went out, so an interrupted run repeats a reminder rather
    than losing it.
    """
    now = now or utcnow()
    sent: Dict[str, int] = {}

    for label, offset in REMINDER_WINDOWS:
        window_start = now + offset - REMINDER_TOLERANCE
        window_end = now + offset + REMINDER_TOLERANCE
        result = await session.execute(
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.CONFIRMED,
                Appointment.scheduled_at >= window_start,
                Appointment.scheduled_at <= window_end,
            )
            .execution_options(populate_existing=True)
        )
        due = [
            (a.id, a.doctor_id, a.patient_session_id, ensure_utc(a.scheduled_at), list(a.reminders_sent or []))
            for a in result.scalars().all()
            if label not in (a.reminders_sent or [])
        ]

        sent[label] = 0
        for appointment_id, doctor_id, patient_session_id, scheduled_at, already_sent in due:
            metadata = {"appointment_id": str(appointment_id), "window": label}
            when = _format_time(scheduled_at)
            await notify(
                NotificationTarget.session(patient_session_id),
                "Appointment Reminder",
                f"Your appointment starts in {label} ({when}).",
                "appointment_reminder",
                metadata,
            )
            await notify(
                NotificationTarget.user(doctor_id),
                "Appointment Reminder",
                f"You have an appointment in {label} ({when}).",
                "appointment_reminder",
                metadata,
            )

            try:
                await session.execute(
                    update(Appointment)
                    .where(Appointment.id == appointment_id)
                    .values(reminders_sent=already_sent + [label])
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to record {label} reminder for {appointment_id}: {e}")
                continue
            sent[label] += 1

    logger.info(f"Appointment reminders sent: {sent}")
    return sent
