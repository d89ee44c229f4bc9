# esiri/modules/consultations/schemas.py
"""Consultations module Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from esiri.models.models import ConsultationStatus, ConsultationType, ServiceType


class ConsultationCreateRequest(BaseModel):
    service_type: ServiceType
    consultation_type: ConsultationType
    chief_complaint: str
    doctor_id: Optional[UUID] = None
    preferred_language: str = Field(default="en", min_length=2, max_length=10)

    @field_validator("chief_complaint")
    def complaint_length(cls, value: str) -> str:
        value = value.strip()
        if not 10 <= len(value) <= 1000:
            raise ValueError("Chief complaint must be between 10 and 1000 characters")
        return value


class ConsultationCreateResponse(BaseModel):
    consultation_id: UUID
    status: ConsultationStatus
    existing: bool = False


class ConsultationResponse(BaseModel):
    id: UUID
    patient_session_id: UUID
    doctor_id: Optional[UUID] = None
    service_type: ServiceType
    consultation_type: ConsultationType
    status: ConsultationStatus
    chief_complaint: str
    preferred_language: str
    remaining_call_minutes: int
    video_room_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
