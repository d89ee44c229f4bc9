# esiri/modules/doctors/schemas.py

from datetime import date, datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from esiri.models.models import AppointmentStatus, ServiceType


class DoctorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    service_type: ServiceType
    is_available: bool


class DoctorListResponse(BaseModel):
    doctors: List[DoctorResponse]
    total: int


class BookedSlotResponse(BaseModel):
    appointment_id: UUID
    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: AppointmentStatus


class DoctorScheduleResponse(BaseModel):
    """Booked times on one day plus the doctor's current consultation load."""
    doctor_id: UUID
    date: date
    is_available: bool
    booked: List[BookedSlotResponse]
    open_consultations: int
    consultation_capacity: int
    remaining_capacity: int
