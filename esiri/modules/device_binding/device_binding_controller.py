# esiri/modules/device_binding/device_binding_controller.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit, limit_by_ip
from esiri.auth.schemas import Identity
from esiri.common.database.database import get_db_session
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import UserRole

from . import device_binding_service as service
from .schemas import (
    BindDeviceRequest,
    BindDeviceResponse,
    CheckDeviceRequest,
    CheckDeviceResponse,
    DeauthorizeDeviceRequest,
    DeauthorizeDeviceResponse,
)

router = APIRouter(prefix="/devices", tags=["Device Binding"])


@router.post("/bind", response_model=ApiResponse[BindDeviceResponse])
async def bind_device(
    request: BindDeviceRequest,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("sensitive", UserRole.DOCTOR)),
):
    """Bind the calling doctor's account to this device."""
    binding = await service.bind_device(db, identity, request.doctor_id, request.device_fingerprint)
    return ApiResponse(
        message=GlobalMessages.DEVICE_BOUND,
        data=BindDeviceResponse(
            doctor_id=binding.doctor_id,
            bound_at=binding.bound_at,
            is_active=binding.is_active,
        ),
    )


@router.post("/check", response_model=ApiResponse[CheckDeviceResponse])
async def check_device(
    request: CheckDeviceRequest,
    _client_ip: str = Depends(limit_by_ip("device-check")),
    db: AsyncSession = Depends(get_db_session),
):
    """Check a device against a doctor's binding before login."""
    result = await service.check_device(db, request.doctor_id, request.device_fingerprint)
    return ApiResponse(data=CheckDeviceResponse(**result))


@router.post("/deauthorize", response_model=ApiResponse[DeauthorizeDeviceResponse])
async def deauthorize_device(
    request: DeauthorizeDeviceRequest,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("sensitive", UserRole.ADMIN)),
):
    """Remove a doctor's device binding."""
    result = await service.deauthorize_device(db, identity, request.doctor_id)
    return ApiResponse(data=DeauthorizeDeviceResponse(**result))
