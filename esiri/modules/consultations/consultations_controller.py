# esiri/modules/consultations/consultations_controller.py
"""Consultations controller with API routes."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import DoctorIdentity, Identity, PatientIdentity
from esiri.common.database.database import get_db_session
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import UserRole

from . import consultations_service as service
from .schemas import ConsultationCreateRequest, ConsultationCreateResponse, ConsultationResponse

router = APIRouter(prefix="/consultations", tags=["Consultations"])


@router.post("", response_model=ApiResponse[ConsultationCreateResponse], status_code=201)
async def create_consultation(
    request: ConsultationCreateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: PatientIdentity = Depends(admit("payment", UserRole.PATIENT)),
):
    """Open a consultation for a paid service tier."""
    consultation, created = await service.create_consultation(db, identity, request, background_tasks)
    if not created:
        response.status_code = 200
    return ApiResponse(
        message=GlobalMessages.CONSULTATION_CREATED if created else GlobalMessages.CONSULTATION_EXISTS,
        data=ConsultationCreateResponse(
            consultation_id=consultation.id,
            status=consultation.status,
            existing=not created,
        ),
    )


@router.get("/{consultation_id}", response_model=ApiResponse[ConsultationResponse])
async def get_consultation(
    consultation_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read", UserRole.PATIENT, UserRole.DOCTOR)),
):
    consultation = await service.get_consultation(db, identity, consultation_id)
    return ApiResponse(data=ConsultationResponse.model_validate(consultation))


@router.post("/{consultation_id}/accept", response_model=ApiResponse[ConsultationResponse])
async def accept_consultation(
    consultation_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: DoctorIdentity = Depends(admit("read", UserRole.DOCTOR)),
):
    consultation = await service.accept_consultation(db, identity, consultation_id, background_tasks)
    return ApiResponse(data=ConsultationResponse.model_validate(consultation))


@router.post("/{consultation_id}/start", response_model=ApiResponse[ConsultationResponse])
async def start_consultation(
    consultation_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    identity: DoctorIdentity = Depends(admit("read", UserRole.DOCTOR)),
):
    consultation = await service.start_consultation(db, identity, consultation_id)
    return ApiResponse(data=ConsultationResponse.model_validate(consultation))


@router.post("/{consultation_id}/complete", response_model=ApiResponse[ConsultationResponse])
async def complete_consultation(
    consultation_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: DoctorIdentity = Depends(admit("read", UserRole.DOCTOR)),
):
    consultation = await service.complete_consultation(db, identity, consultation_id, background_tasks)
    return ApiResponse(data=ConsultationResponse.model_validate(consultation))


@router.post("/{consultation_id}/cancel", response_model=ApiResponse[ConsultationResponse])
async def cancel_consultation(
    consultation_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read", UserRole.PATIENT, UserRole.DOCTOR)),
):
    consultation = await service.cancel_consultation(db, identity, consultation_id, background_tasks)
    return ApiResponse(data=ConsultationResponse.model_validate(consultation))
