# esiri/modules/cron/cron_controller.py
"""Endpoints hit by the external scheduler. Each run is safe to repeat or overlap."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import verify_cron_secret
from esiri.common.database.database import get_db_session
from esiri.common.integrations.mpesa_client import MpesaGateway, get_payment_gateway
from esiri.common.schemas import ApiResponse
from esiri.modules.appointments import appointments_service
from esiri.modules.appointments.schemas import MissedSweepResponse, ReminderSweepResponse
from esiri.modules.doctors import doctors_service
from esiri.modules.payments import payments_service
from esiri.modules.payments.schemas import ReconcileSummary

from .schemas import LiftSuspensionsResponse

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/missed-appointments", response_model=ApiResponse[MissedSweepResponse])
async def mark_missed_appointments(db: AsyncSession = Depends(get_db_session)):
    missed = await appointments_service.mark_missed_appointments(db)
    return ApiResponse(data=MissedSweepResponse(missed_count=missed))


@router.post("/appointment-reminders", response_model=ApiResponse[ReminderSweepResponse])
async def send_appointment_reminders(db: AsyncSession = Depends(get_db_session)):
    sent = await appointments_service.send_appointment_reminders(db)
    return ApiResponse(data=ReminderSweepResponse(reminders_sent=sent))


@router.post("/lift-suspensions", response_model=ApiResponse[LiftSuspensionsResponse])
async def lift_expired_suspensions(db: AsyncSession = Depends(get_db_session)):
    lifted = await doctors_service.lift_expired_suspensions(db)
    return ApiResponse(data=LiftSuspensionsResponse(lifted_count=lifted))


@router.post("/reconcile-payments", response_model=ApiResponse[ReconcileSummary])
async def reconcile_stale_payments(
    db: AsyncSession = Depends(get_db_session),
    gateway: MpesaGateway = Depends(get_payment_gateway),
):
    """Settle payments whose gateway callback never arrived."""
    summary = await payments_service.reconcile_stale_payments(db, gateway)
    return ApiResponse(data=summary)
