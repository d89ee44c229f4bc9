# esiri/modules/payments/payments_controller.py

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import PatientIdentity
from esiri.common.config import settings
from esiri.common.database.database import get_db_session
from esiri.common.errors import Forbidden
from esiri.common.integrations.mpesa_client import MpesaGateway, get_payment_gateway
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_functions import get_client_ip
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import UserRole

from . import payments_service as service
from .schemas import (
    CallRechargeRequest,
    PaymentInitiationResponse,
    PaymentStatusResponse,
    ServiceAccessPaymentRequest,
)

router = APIRouter(prefix="/payments", tags=["Payments"])

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/service-access", response_model=ApiResponse[PaymentInitiationResponse])
async def pay_for_service_access(
    request: ServiceAccessPaymentRequest,
    db: AsyncSession = Depends(get_db_session),
    gateway: MpesaGateway = Depends(get_payment_gateway),
    identity: PatientIdentity = Depends(admit("payment", UserRole.PATIENT)),
):
    """Start an M-Pesa payment for access to a service tier."""
    payment, access = await service.initiate_service_access(db, identity, request, gateway)
    if access is not None:
        return ApiResponse(
            message=GlobalMessages.ACCESS_ALREADY_ACTIVE,
            data=PaymentInitiationResponse(
                status="already_active",
                amount=access.amount,
                access_expires_at=access.expires_at,
            ),
        )
    return ApiResponse(
        message=GlobalMessages.PAYMENT_INITIATED,
        data=PaymentInitiationResponse(
            payment_id=payment.id,
            checkout_request_id=payment.mpesa_checkout_request_id,
            status=payment.status.value,
            amount=payment.amount,
        ),
    )


@router.post("/call-recharge", response_model=ApiResponse[PaymentInitiationResponse])
async def recharge_call_minutes(
    request: CallRechargeRequest,
    db: AsyncSession = Depends(get_db_session),
    gateway: MpesaGateway = Depends(get_payment_gateway),
    identity: PatientIdentity = Depends(admit("payment", UserRole.PATIENT)),
):
    """Start an M-Pesa payment for extra call minutes."""
    payment = await service.initiate_call_recharge(db, identity, request, gateway)
    return ApiResponse(
        message=GlobalMessages.PAYMENT_INITIATED,
        data=PaymentInitiationResponse(
            payment_id=payment.id,
            checkout_request_id=payment.mpesa_checkout_request_id,
            status=payment.status.value,
            amount=payment.amount,
        ),
    )


@router.get("/status/{checkout_request_id}", response_model=ApiResponse[PaymentStatusResponse])
async def get_payment_status(
    checkout_request_id: str,
    db: AsyncSession = Depends(get_db_session),
    identity: PatientIdentity = Depends(admit("read", UserRole.PATIENT)),
):
    payment = await service.get_payment_status(db, identity, checkout_request_id)
    return ApiResponse(data=PaymentStatusResponse(
        payment_id=payment.id,
        payment_type=payment.payment_type,
        status=payment.status,
        amount=payment.amount,
        checkout_request_id=payment.mpesa_checkout_request_id,
        transaction_id=payment.transaction_id,
        failure_reason=payment.failure_reason,
        created_at=payment.created_at,
        completed_at=payment.completed_at,
    ))


@router.post("/mpesa/callback")
async def mpesa_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
):
    """M-Pesa STK callback. Always acknowledged once the sender is trusted."""
    client_ip = get_client_ip(request)
    if settings.PAYMENT_ENV == "production" and client_ip not in settings.MPESA_ALLOWED_IPS:
        await log_event(
            "mpesa_callback",
            "untrusted_sender",
            level="warn",
            ip_address=client_ip,
        )
        raise Forbidden("Untrusted callback origin.")

    # Unparseable bodies are logged and still acknowledged
    try:
        payload = await request.json()
    except ValueError as e:
        await log_event(
            "mpesa_callback",
            "invalid_payload",
            level="error",
            error_message=str(e),
            ip_address=client_ip,
        )
        return CALLBACK_ACK

    await service.reconcile_callback(db, payload, background_tasks)
    return CALLBACK_ACK
