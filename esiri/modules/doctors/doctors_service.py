# esiri/modules/doctors/doctors_service.py
"""Doctor discovery, schedules, eligibility checks and suspension expiry."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.common.errors import NotFound
from esiri.common.utils.global_functions import utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import (
    Appointment, AppointmentStatus, Consultation, ConsultationStatus, DoctorProfile, ServiceType,
)
from esiri.modules.notifications.notifications_service import NotificationTarget, notify

logger = logging.getLogger(__name__)

# Concurrent open consultations a doctor is expected to carry
CONSULTATION_CAPACITY = 10

BOOKED_STATUSES = (
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)
OPEN_CONSULTATION_STATUSES = (
    ConsultationStatus.PENDING,
    ConsultationStatus.ACTIVE,
    ConsultationStatus.IN_PROGRESS,
)


async def get_verified_doctor(
    session: AsyncSession,
    doctor_id: UUID,
    service_type: Optional[ServiceType] = None,
) -> Optional[DoctorProfile]:
    """The doctor if verified (and serving ``service_type`` when given), else None."""
    query = select(DoctorProfile).where(
        DoctorProfile.id == doctor_id,
        DoctorProfile.is_verified.is_(True),
    )
    if service_type is not None:
        query = query.where(DoctorProfile.service_type == service_type)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list_doctors(
    session: AsyncSession,
    service_type: ServiceType,
    available_only: bool = False,
) -> List[DoctorProfile]:
    """Verified doctors of a service tier, by name."""
    query = select(DoctorProfile).where(
        DoctorProfile.service_type == service_type,
        DoctorProfile.is_verified.is_(True),
    )
    if available_only:
        query = query.where(DoctorProfile.is_available.is_(True))
    result = await session.execute(query.order_by(DoctorProfile.full_name))
    return list(result.scalars().all())


async def get_doctor_schedule(
    session: AsyncSession,
    doctor_id: UUID,
    day: date,
) -> Tuple[DoctorProfile, List[Appointment], int]:
    """
    The doctor's booked appointments on ``day`` (UTC) and the number of
    consultations currently open with them.
    """
    doctor = await get_verified_doctor(session, doctor_id)
    if doctor is None:
        raise NotFound(GlobalMessages.DOCTOR_NOT_FOUND)

    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    result = await session.execute(
        select(Appointment)
        .where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(BOOKED_STATUSES),
            Appointment.scheduled_at >= day_start,
            Appointment.scheduled_at < day_start + timedelta(days=1),
        )
        .order_by(Appointment.scheduled_at)
    )
    appointments = list(result.scalars().all())

    open_result = await session.execute(
        select(func.count(Consultation.id)).where(
            Consultation.doctor_id == doctor_id,
            Consultation.status.in_(OPEN_CONSULTATION_STATUSES),
        )
    )
    return doctor, appointments, open_result.scalar() or 0


async def lift_expired_suspensions(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Make doctors whose suspension has ended available again.
    Each doctor is lifted by a conditional update so overlapping runs lift them once.
    """
    now = now or utcnow()
    result = await session.execute(
        select(DoctorProfile.id).where(
            DoctorProfile.suspended_until.is_not(None),
            DoctorProfile.suspended_until <= now,
            DoctorProfile.is_available.is_(False),
        )
    )
    doctor_ids = list(result.scalars().all())

    lifted = []
    for doctor_id in doctor_ids:
        applied = await session.execute(
            update(DoctorProfile)
            .where(
                DoctorProfile.id == doctor_id,
                DoctorProfile.suspended_until <= now,
                DoctorProfile.is_available.is_(False),
            )
            .values(is_available=True, suspended_until=None)
            .execution_options(synchronize_session=False)
        )
        if applied.rowcount == 1:
            lifted.append(doctor_id)
    await session.commit()

    for doctor_id in lifted:
        await notify(
            NotificationTarget.user(doctor_id),
            "Suspension Lifted",
            "Your suspension period has ended. You can now accept consultations again.",
            "suspension_lifted",
            {"doctor_id": str(doctor_id)},
        )

    if lifted:
        await log_event(
            "lift_expired_suspensions",
            "suspensions_lifted",
            metadata={"count": len(lifted)},
        )
    logger.info(f"Lifted {len(lifted)} expired suspension(s)")
    return len(lifted)
