# esiri/auth/auth_controller.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.common.database.database import get_db_session
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import UserRole
from esiri.auth import auth_service as service
from esiri.auth.dependencies import admit, limit_by_ip
from esiri.auth.schemas import (
    CreateSessionRequest,
    ExtendSessionRequest,
    ExtendSessionResponse,
    PatientIdentity,
    SessionResponse,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/patient-session", response_model=ApiResponse[SessionResponse], status_code=201)
async def create_patient_session(
    request: CreateSessionRequest,
    client_ip: str = Depends(limit_by_ip("session-create")),
    db: AsyncSession = Depends(get_db_session),
):
    """Start an anonymous patient session."""
    patient_session, token = await service.create_patient_session(db, request.push_token, client_ip)
    return ApiResponse(
        message=GlobalMessages.SESSION_CREATED,
        data=SessionResponse(
            session_id=patient_session.id,
            patient_code=patient_session.patient_code,
            expires_at=patient_session.expires_at,
            access_token=token,
        ),
    )


@router.post("/extend-session", response_model=ApiResponse[ExtendSessionResponse])
async def extend_session(
    request: ExtendSessionRequest,
    identity: PatientIdentity = Depends(admit("sensitive", UserRole.PATIENT)),
    db: AsyncSession = Depends(get_db_session),
):
    """Extend the caller's patient session."""
    expires_at, token = await service.extend_session(db, identity, request.extend_hours)
    return ApiResponse(
        message=GlobalMessages.SESSION_EXTENDED,
        data=ExtendSessionResponse(
            session_id=identity.session_id,
            expires_at=expires_at,
            access_token=token,
        ),
    )
