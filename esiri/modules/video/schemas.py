# esiri/modules/video/schemas.py

from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel


class VideoTokenRequest(BaseModel):
    consultation_id: UUID


class VideoTokenResponse(BaseModel):
    token: str
    room_id: str
    permissions: List[str]
    expires_at: datetime
