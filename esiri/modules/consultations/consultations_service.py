# esiri/modules/consultations/consultations_service.py
"""Consultation lifecycle: pending -> active -> in_progress -> completed, or cancelled."""

import logging
from typing import Iterable, Optional, Tuple
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import DoctorIdentity, Identity, PatientIdentity
from esiri.common.database.transitions import transition
from esiri.common.errors import Conflict, Forbidden, NotFound, ValidationError
from esiri.common.utils.global_functions import utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import (
    OPEN_CONSULTATION_STATUSES, Consultation, ConsultationStatus,
)
from esiri.modules.doctors.doctors_service import get_verified_doctor
from esiri.modules.notifications.notifications_service import NotificationTarget, dispatch
from esiri.modules.payments.payments_service import get_active_access

from .schemas import ConsultationCreateRequest

logger = logging.getLogger(__name__)


async def get_open_consultation(session: AsyncSession, patient_session_id: UUID) -> Optional[Consultation]:
    result = await session.execute(
        select(Consultation)
        .where(
            Consultation.patient_session_id == patient_session_id,
            Consultation.status.in_(OPEN_CONSULTATION_STATUSES),
        )
        .order_by(Consultation.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load(session: AsyncSession, consultation_id: UUID) -> Consultation:
    consultation = await session.get(Consultation, consultation_id, populate_existing=True)
    if consultation is None:
        raise NotFound(GlobalMessages.CONSULTATION_NOT_FOUND)
    return consultation


def _is_patient_of(identity: Identity, consultation: Consultation) -> bool:
    return isinstance(identity, PatientIdentity) and identity.session_id == consultation.patient_session_id


def _is_doctor_of(identity: Identity, consultation: Consultation) -> bool:
    return isinstance(identity, DoctorIdentity) and identity.user_id == consultation.doctor_id


async def create_consultation(
    session: AsyncSession,
    identity: PatientIdentity,
    request: ConsultationCreateRequest,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Tuple[Consultation, bool]:
    """
    Open a consultation for a patient who has paid for the service tier.
    Returns (consultation, created); created is False when the session already
    had an open consultation, which is returned instead.
    """
    access = await get_active_access(session, identity.session_id, request.service_type)
    if access is None:
        raise ValidationError(GlobalMessages.NO_ACTIVE_ACCESS, metadata={"service_type": request.service_type.value})

    if request.doctor_id is not None:
        doctor = await get_verified_doctor(session, request.doctor_id, request.service_type)
        if doctor is None:
            raise ValidationError(GlobalMessages.DOCTOR_NOT_ELIGIBLE)

    existing = await get_open_consultation(session, identity.session_id)
    if existing is not None:
        return existing, False

    now = utcnow()
    assigned = request.doctor_id is not None
    consultation = Consultation(
        patient_session_id=identity.session_id,
        doctor_id=request.doctor_id,
        service_type=request.service_type,
        consultation_type=request.consultation_type,
        status=ConsultationStatus.ACTIVE if assigned else ConsultationStatus.PENDING,
        chief_complaint=request.chief_complaint,
        preferred_language=request.preferred_language,
        accepted_at=now if assigned else None,
    )
    session.add(consultation)
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race with a concurrent create for the same session
        await session.rollback()
        existing = await get_open_consultation(session, identity.session_id)
        if existing is None:
            raise
        return existing, False

    await log_event(
        "create_consultation",
        "consultation_created",
        identity=identity,
        metadata={
            "consultation_id": str(consultation.id),
            "service_type": request.service_type.value,
            "assigned": assigned,
        },
    )

    metadata = {
        "consultation_id": str(consultation.id),
        "service_type": request.service_type.value,
        "consultation_type": request.consultation_type.value,
    }
    if assigned:
        await dispatch(
            background_tasks,
            NotificationTarget.user(request.doctor_id),
            "New Consultation",
            "A patient has started a consultation with you.",
            "consultation_assigned",
            metadata,
        )
    else:
        await dispatch(
            background_tasks,
            NotificationTarget.doctors(request.service_type),
            "New Consultation Request",
            f"A patient is requesting a {request.service_type.value.replace('_', ' ')} consultation.",
            "consultation_request",
            metadata,
        )
    return consultation, True


async def get_consultation(session: AsyncSession, identity: Identity, consultation_id: UUID) -> Consultation:
    consultation = await _load(session, consultation_id)
    if not (_is_patient_of(identity, consultation) or _is_doctor_of(identity, consultation)):
        raise Forbidden(GlobalMessages.NOT_CONSULTATION_PARTICIPANT)
    return consultation


async def _move(
    session: AsyncSession,
    consultation_id: UUID,
    from_statuses: Iterable[ConsultationStatus],
    to_status: ConsultationStatus,
    **values,
) -> Consultation:
    applied = await transition(session, Consultation, consultation_id, from_statuses, to_status, **values)
    if not applied:
        await session.rollback()
        raise Conflict(GlobalMessages.CONSULTATION_STATE_CHANGED)
    await session.commit()
    return await _load(session, consultation_id)


async def accept_consultation(
    session: AsyncSession,
    identity: DoctorIdentity,
    consultation_id: UUID,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Consultation:
    """A verified, available doctor of the right tier claims a pending consultation."""
    consultation = await _load(session, consultation_id)
    doctor = await get_verified_doctor(session, identity.user_id, consultation.service_type)
    if doctor is None or not doctor.is_available:
        raise Forbidden(GlobalMessages.DOCTOR_NOT_ELIGIBLE)

    consultation = await _move(
        session, consultation_id, [ConsultationStatus.PENDING], ConsultationStatus.ACTIVE,
        doctor_id=identity.user_id, accepted_at=utcnow(),
    )
    await dispatch(
        background_tasks,
        NotificationTarget.session(consultation.patient_session_id),
        "Doctor Assigned",
        f"{doctor.full_name} has accepted your consultation.",
        "consultation_accepted",
        {"consultation_id": str(consultation.id)},
    )
    return consultation


async def start_consultation(session: AsyncSession, identity: DoctorIdentity, consultation_id: UUID) -> Consultation:
    consultation = await _load(session, consultation_id)
    if not _is_doctor_of(identity, consultation):
        raise Forbidden(GlobalMessages.NOT_CONSULTATION_PARTICIPANT)
    return await _move(
        session, consultation_id, [ConsultationStatus.ACTIVE], ConsultationStatus.IN_PROGRESS,
        started_at=utcnow(),
    )


async def complete_consultation(
    session: AsyncSession,
    identity: DoctorIdentity,
    consultation_id: UUID,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Consultation:
    consultation = await _load(session, consultation_id)
    if not _is_doctor_of(identity, consultation):
        raise Forbidden(GlobalMessages.NOT_CONSULTATION_PARTICIPANT)

    consultation = await _move(
        session, consultation_id,
        [ConsultationStatus.ACTIVE, ConsultationStatus.IN_PROGRESS], ConsultationStatus.COMPLETED,
        ended_at=utcnow(),
    )
    await dispatch(
        background_tasks,
        NotificationTarget.session(consultation.patient_session_id),
        "Consultation Completed",
        "Your consultation has ended. Thank you for using Esiri.",
        "consultation_completed",
        {"consultation_id": str(consultation.id)},
    )
    return consultation


async def cancel_consultation(
    session: AsyncSession,
    identity: Identity,
    consultation_id: UUID,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Consultation:
    """Either participant may cancel while the consultation is still open."""
    consultation = await _load(session, consultation_id)
    by_patient = _is_patient_of(identity, consultation)
    if not (by_patient or _is_doctor_of(identity, consultation)):
        raise Forbidden(GlobalMessages.NOT_CONSULTATION_PARTICIPANT)

    consultation = await _move(
        session, consultation_id, OPEN_CONSULTATION_STATUSES, ConsultationStatus.CANCELLED,
        ended_at=utcnow(),
    )

    if by_patient and consultation.doctor_id is not None:
        target = NotificationTarget.user(consultation.doctor_id)
    elif not by_patient:
        target = NotificationTarget.session(consultation.patient_session_id)
    else:
        return consultation

    await dispatch(
        background_tasks,
        target,
        "Consultation Cancelled",
        "The consultation has been cancelled.",
        "consultation_cancelled",
        {"consultation_id": str(consultation.id)},
    )
    return consultation
