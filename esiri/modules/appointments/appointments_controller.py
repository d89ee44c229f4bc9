# esiri/modules/appointments/appointments_controller.py
"""Appointments controller with API routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import DoctorIdentity, Identity, PatientIdentity
from esiri.common.database.database import get_db_session
from esiri.common.schemas import ApiResponse
from esiri.models.models import AppointmentStatus, UserRole

from . import appointments_service as service
from .schemas import (
    AppointmentCancelRequest, AppointmentCreateRequest, AppointmentListResponse,
    AppointmentRescheduleRequest, AppointmentRescheduleResponse, AppointmentResponse,
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.post("", response_model=ApiResponse[AppointmentResponse], status_code=201)
async def book_appointment(
    request: AppointmentCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: PatientIdentity = Depends(admit("payment", UserRole.PATIENT)),
):
    """Book an appointment with a verified doctor."""
    appointment = await service.book_appointment(db, identity, request, background_tasks)
    return ApiResponse(
        message="Appointment booked successfully.",
        data=AppointmentResponse.model_validate(appointment),
    )


@router.get("", response_model=ApiResponse[AppointmentListResponse])
async def list_appointments(
    status: Optional[AppointmentStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read", UserRole.PATIENT, UserRole.DOCTOR)),
):
    appointments, total = await service.list_appointments(db, identity, status, limit)
    return ApiResponse(
        data=AppointmentListResponse(
            appointments=[AppointmentResponse.model_validate(a) for a in appointments],
            total=total,
        )
    )


@router.post("/{appointment_id}/confirm", response_model=ApiResponse[AppointmentResponse])
async def confirm_appointment(
    appointment_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: DoctorIdentity = Depends(admit("read", UserRole.DOCTOR)),
):
    appointment = await service.confirm_appointment(db, identity, appointment_id, background_tasks)
    return ApiResponse(message="Appointment confirmed.", data=AppointmentResponse.model_validate(appointment))


@router.post("/{appointment_id}/cancel", response_model=ApiResponse[AppointmentResponse])
async def cancel_appointment(
    appointment_id: UUID,
    request: AppointmentCancelRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read", UserRole.PATIENT, UserRole.DOCTOR)),
):
    appointment = await service.cancel_appointment(
        db, identity, appointment_id, request.cancellation_reason, background_tasks
    )
    return ApiResponse(message="Appointment cancelled.", data=AppointmentResponse.model_validate(appointment))


@router.post("/{appointment_id}/reschedule", response_model=ApiResponse[AppointmentRescheduleResponse])
async def reschedule_appointment(
    appointment_id: UUID,
    request: AppointmentRescheduleRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: DoctorIdentity = Depends(admit("sensitive", UserRole.DOCTOR)),
):
    """Move an appointment to a new time. The original is kept as rescheduled."""
    original_id, replacement = await service.reschedule_appointment(
        db, identity, appointment_id, request, background_tasks
    )
    return ApiResponse(
        message="Appointment rescheduled.",
        data=AppointmentRescheduleResponse(
            original_appointment_id=original_id,
            new_appointment=AppointmentResponse.model_validate(replacement),
        ),
    )
