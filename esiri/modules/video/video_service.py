# esiri/modules/video/video_service.py
"""Video call access for consultation participants."""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import DoctorIdentity, Identity
from esiri.common.config import settings
from esiri.common.errors import ValidationError
from esiri.common.integrations.video_client import (
    DOCTOR_PERMISSIONS, PATIENT_PERMISSIONS, VideoProvider,
)
from esiri.common.utils.global_functions import utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import Consultation, ConsultationStatus
from esiri.modules.consultations.consultations_service import get_consultation

from .schemas import VideoTokenResponse

logger = logging.getLogger(__name__)

LIVE_STATUSES = (ConsultationStatus.ACTIVE, ConsultationStatus.IN_PROGRESS)


async def _ensure_room(session: AsyncSession, consultation: Consultation, provider: VideoProvider) -> str:
    if consultation.video_room_id:
        return consultation.video_room_id

    room_id = await provider.create_room()
    # Only the first caller stores its room; later callers use the stored one
    await session.execute(
        update(Consultation)
        .where(Consultation.id == consultation.id, Consultation.video_room_id.is_(None))
        .values(video_room_id=room_id)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    stored: Optional[Consultation] = await session.get(Consultation, consultation.id, populate_existing=True)
    return stored.video_room_id


async def issue_video_token(
    session: AsyncSession,
    identity: Identity,
    consultation_id: UUID,
    provider: VideoProvider,
) -> VideoTokenResponse:
    consultation = await get_consultation(session, identity, consultation_id)
    if consultation.status not in LIVE_STATUSES:
        raise ValidationError(
            GlobalMessages.CONSULTATION_NOT_LIVE,
            metadata={"status": consultation.status.value},
        )

    room_id = await _ensure_room(session, consultation, provider)
    permissions = DOCTOR_PERMISSIONS if isinstance(identity, DoctorIdentity) else PATIENT_PERMISSIONS
    ttl = settings.VIDEO_TOKEN_TTL_MINUTES
    token = provider.issue_token(permissions, room_id=room_id, ttl_minutes=ttl)

    await log_event(
        "issue_video_token",
        "video_token_issued",
        identity=identity,
        metadata={"consultation_id": str(consultation_id), "room_id": room_id},
    )
    return VideoTokenResponse(
        token=token,
        room_id=room_id,
        permissions=permissions,
        expires_at=utcnow() + timedelta(minutes=ttl),
    )
