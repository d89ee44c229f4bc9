# esiri/modules/video/video_controller.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import Identity
from esiri.common.database.database import get_db_session
from esiri.common.integrations.video_client import VideoProvider, get_video_provider
from esiri.common.schemas import ApiResponse
from esiri.models.models import UserRole

from . import video_service as service
from .schemas import VideoTokenRequest, VideoTokenResponse

router = APIRouter(prefix="/video", tags=["Video"])


@router.post("/token", response_model=ApiResponse[VideoTokenResponse])
async def issue_video_token(
    request: VideoTokenRequest,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read", UserRole.PATIENT, UserRole.DOCTOR)),
    provider: VideoProvider = Depends(get_video_provider),
):
    """Join token for the consultation's video room."""
    data = await service.issue_video_token(db, identity, request.consultation_id, provider)
    return ApiResponse(data=data)
