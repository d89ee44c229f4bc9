# esiri/common/integrations/video_client.py
"""VideoSDK room creation and participant tokens."""

import logging
import uuid
from datetime import timedelta
from typing import List, Optional

import httpx
import jwt

from esiri.common.config import settings
from esiri.common.errors import UpstreamError
from esiri.common.utils.global_functions import utcnow
from esiri.common.utils.global_messages import GlobalMessages

logger = logging.getLogger(__name__)

PATIENT_PERMISSIONS = ["allow_join"]
DOCTOR_PERMISSIONS = ["allow_join", "allow_mod"]


class VideoProvider:
    def __init__(
        self,
        api_key: str = None,
        secret: str = None,
        api_endpoint: str = None,
        timeout: float = None,
    ):
        self.api_key = api_key if api_key is not None else settings.VIDEOSDK_API_KEY
        self.secret = secret if secret is not None else settings.VIDEOSDK_SECRET
        self.api_endpoint = api_endpoint or settings.VIDEOSDK_API_ENDPOINT
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    def issue_token(
        self,
        permissions: List[str],
        room_id: Optional[str] = None,
        ttl_minutes: int = None,
    ) -> str:
        if not self.api_key or not self.secret:
            raise UpstreamError(GlobalMessages.VIDEO_NOT_CONFIGURED)

        now = utcnow()
        payload = {
            "apikey": self.api_key,
            "permissions": permissions,
            "version": 2,
            "iat": now,
            "exp": now + timedelta(minutes=ttl_minutes or settings.VIDEO_TOKEN_TTL_MINUTES),
        }
        if room_id:
            payload["roomId"] = room_id
        return jwt.encode(payload, self.secret, algorithm="HS256")

    async def create_room(self) -> str:
        """Create a meeting room and return its id."""
        token = self.issue_token(DOCTOR_PERMISSIONS, ttl_minutes=5)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.api_endpoint}/rooms",
                    headers={"Authorization": token},
                    json={},
                )
                response.raise_for_status()
                return response.json()["roomId"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Video room creation failed: {e}")
            raise UpstreamError("Video room creation failed.")


class MockVideoProvider(VideoProvider):
    """Local rooms for development; tokens are still signed."""

    async def create_room(self) -> str:
        return f"mock-room-{uuid.uuid4().hex[:12]}"


_provider: Optional[VideoProvider] = None


def get_video_provider() -> VideoProvider:
    global _provider
    if _provider is None:
        _provider = MockVideoProvider() if settings.VIDEO_ENV == "mock" else VideoProvider()
    return _provider
