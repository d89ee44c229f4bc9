# esiri/modules/doctors/doctors_controller.py

from datetime import date, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import Identity
from esiri.common.database.database import get_db_session
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_functions import ensure_utc
from esiri.models.models import ServiceType

from . import doctors_service as service
from .schemas import BookedSlotResponse, DoctorListResponse, DoctorResponse, DoctorScheduleResponse

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.get("", response_model=ApiResponse[DoctorListResponse])
async def list_doctors(
    service_type: ServiceType = Query(...),
    available_only: bool = False,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    """List verified doctors for a service tier."""
    doctors = await service.list_doctors(db, service_type, available_only)
    return ApiResponse(data=DoctorListResponse(
        doctors=[DoctorResponse.model_validate(d) for d in doctors],
        total=len(doctors),
    ))


@router.get("/{doctor_id}/slots", response_model=ApiResponse[DoctorScheduleResponse])
async def get_doctor_slots(
    doctor_id: UUID,
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    """Times already booked with a doctor on a given day, for picking a free slot."""
    doctor, appointments, open_consultations = await service.get_doctor_schedule(db, doctor_id, day)
    booked = []
    for appointment in appointments:
        start = ensure_utc(appointment.scheduled_at)
        booked.append(BookedSlotResponse(
            appointment_id=appointment.id,
            scheduled_at=start,
            ends_at=start + timedelta(minutes=appointment.duration_minutes),
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
        ))
    return ApiResponse(data=DoctorScheduleResponse(
        doctor_id=doctor.id,
        date=day,
        is_available=doctor.is_available,
        booked=booked,
        open_consultations=open_consultations,
        consultation_capacity=service.CONSULTATION_CAPACITY,
        remaining_capacity=max(0, service.CONSULTATION_CAPACITY - open_consultations),
    ))
