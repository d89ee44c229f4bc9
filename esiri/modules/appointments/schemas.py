# esiri/modules/appointments/schemas.py
"""Appointments module Pydantic schemas."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from esiri.common.utils.global_functions import ensure_utc
from esiri.models.models import AppointmentStatus, ConsultationType, ServiceType


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class AppointmentCreateRequest(BaseModel):
    """Request to book an appointment with a doctor."""
    doctor_id: UUID
    scheduled_at: datetime
    consultation_type: ConsultationType = ConsultationType.VIDEO
    chief_complaint: Optional[str] = Field(default=None, max_length=1000)
    grace_period_minutes: int = Field(default=5, ge=0, le=30)
    duration_minutes: int = Field(default=15, ge=5, le=120)

    @field_validator("scheduled_at")
    def as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AppointmentRescheduleRequest(BaseModel):
    """Request to move an appointment to a new time."""
    new_scheduled_at: datetime
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("new_scheduled_at")
    def as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AppointmentCancelRequest(BaseModel):
    """Request to cancel an appointment."""
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    doctor_id: UUID
    patient_session_id: UUID
    scheduled_at: datetime
    grace_period_minutes: int
    duration_minutes: int
    service_type: ServiceType
    consultation_type: ConsultationType
    status: AppointmentStatus
    reminders_sent: List[str] = []
    rescheduled_from: Optional[UUID] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    total: int


class AppointmentRescheduleResponse(BaseModel):
    original_appointment_id: UUID
    new_appointment: AppointmentResponse


class MissedSweepResponse(BaseModel):
    missed_count: int


class ReminderSweepResponse(BaseModel):
    reminders_sent: Dict[str, int]
