# esiri/modules/payments/payments_service.py
"""Payment initiation, webhook reconciliation and the pending-payment sweep."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple
from uuid import UUID

from fastapi import BackgroundTasks
from pydantic import ValidationError as PayloadError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import PatientIdentity
from esiri.common.config import settings
from esiri.common.database.transitions import transition
from esiri.common.errors import Conflict, NotFound, Unauthorized, UpstreamError, ValidationError
from esiri.common.integrations.mpesa_client import MpesaGateway
from esiri.common.utils.global_functions import ensure_utc, utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import (
    CallRechargePayment, Consultation, ConsultationStatus, PatientSession, Payment,
    PaymentStatus, PaymentType, ServiceAccessPayment, ServiceType,
)
from esiri.modules.notifications.notifications_service import NotificationTarget, dispatch

from .schemas import (
    RECHARGE_PACKAGES, SERVICE_PRICES, CallRechargeRequest, MpesaCallbackPayload,
    ReconcileSummary, ServiceAccessPaymentRequest,
)

logger = logging.getLogger(__name__)

RECHARGEABLE_STATUSES = (ConsultationStatus.ACTIVE, ConsultationStatus.IN_PROGRESS)


# ============================================================================
# ACCESS GRANTS
# ============================================================================

async def get_active_access(
    session: AsyncSession,
    patient_session_id: UUID,
    service_type: ServiceType,
    now: Optional[datetime] = None,
) -> Optional[ServiceAccessPayment]:
    """Latest unexpired, granted service access for the session and tier."""
    now = now or utcnow()
    result = await session.execute(
        select(ServiceAccessPayment)
        .where(
            ServiceAccessPayment.patient_session_id == patient_session_id,
            ServiceAccessPayment.service_type == service_type,
            ServiceAccessPayment.access_granted.is_(True),
            ServiceAccessPayment.expires_at > now,
        )
        .order_by(ServiceAccessPayment.expires_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ============================================================================
# INITIATION
# ============================================================================

async def _require_active_session(session: AsyncSession, patient_session_id: UUID) -> None:
    patient_session = await session.get(PatientSession, patient_session_id)
    if (
        patient_session is None
        or not patient_session.is_active
        or ensure_utc(patient_session.expires_at) <= utcnow()
    ):
        raise Unauthorized(GlobalMessages.SESSION_EXPIRED)


async def _find_by_idempotency_key(session: AsyncSession, idempotency_key: str) -> Optional[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _owned_replay(payment: Payment, identity: PatientIdentity) -> Payment:
    if payment.patient_session_id != identity.session_id:
        raise Conflict("Idempotency key already used.")
    return payment


async def _start_payment(
    session: AsyncSession,
    gateway: MpesaGateway,
    identity: PatientIdentity,
    payment: Payment,
    description: str,
) -> Payment:
    """
    Persist a pending payment, then ask the gateway for an STK push.
    A concurrent request with the same idempotency key returns the stored payment.
    """
    idempotency_key = payment.idempotency_key
    session.add(payment)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await _find_by_idempotency_key(session, idempotency_key)
        if existing is None:
            raise
        return _owned_replay(existing, identity)

    try:
        push = await gateway.initiate_stk_push(
            phone_number=payment.phone_number,
            amount=payment.amount,
            account_reference=f"ESIRI-{str(payment.id)[:6]}",
            description=description,
            idempotency_key=payment.idempotency_key,
        )
    except UpstreamError as e:
        await transition(
            session, Payment, payment.id, [PaymentStatus.PENDING], PaymentStatus.FAILED,
            failure_reason=e.message, failed_at=utcnow(),
        )
        await session.commit()
        await log_event(
            "initiate_payment",
            "gateway_failed",
            level="error",
            identity=identity,
            metadata={"payment_id": str(payment.id), "payment_type": payment.payment_type.value},
            error_message=e.message,
        )
        raise

    payment.mpesa_checkout_request_id = push.checkout_request_id
    payment.merchant_request_id = push.merchant_request_id
    await session.commit()

    await log_event(
        "initiate_payment",
        "stk_push_sent",
        identity=identity,
        metadata={
            "payment_id": str(payment.id),
            "payment_type": payment.payment_type.value,
            "amount": payment.amount,
            "checkout_request_id": push.checkout_request_id,
        },
    )
    return payment


async def initiate_service_access(
    session: AsyncSession,
    identity: PatientIdentity,
    request: ServiceAccessPaymentRequest,
    gateway: MpesaGateway,
) -> Tuple[Optional[Payment], Optional[ServiceAccessPayment]]:
    """
    Start a service-access payment. Returns (payment, None), or
    (None, access) when the session already holds access for the tier.
    """
    await _require_active_session(session, identity.session_id)

    existing = await _find_by_idempotency_key(session, request.idempotency_key)
    if existing is not None:
        return _owned_replay(existing, identity), None

    access = await get_active_access(session, identity.session_id, request.service_type)
    if access is not None:
        return None, access

    payment = Payment(
        payment_type=PaymentType.SERVICE_ACCESS,
        patient_session_id=identity.session_id,
        service_type=request.service_type,
        amount=SERVICE_PRICES[request.service_type],
        phone_number=request.phone_number,
        idempotency_key=request.idempotency_key,
        status=PaymentStatus.PENDING,
    )
    payment = await _start_payment(
        session, gateway, identity, payment, f"{request.service_type.value} access"
    )
    return payment, None


async def initiate_call_recharge(
    session: AsyncSession,
    identity: PatientIdentity,
    request: CallRechargeRequest,
    gateway: MpesaGateway,
) -> Payment:
    """Start a payment for extra call minutes on an ongoing consultation."""
    await _require_active_session(session, identity.session_id)

    existing = await _find_by_idempotency_key(session, request.idempotency_key)
    if existing is not None:
        return _owned_replay(existing, identity)

    consultation = await session.get(Consultation, request.consultation_id)
    if consultation is None or consultation.patient_session_id != identity.session_id:
        raise NotFound(GlobalMessages.CONSULTATION_NOT_FOUND)
    if consultation.status not in RECHARGEABLE_STATUSES:
        raise ValidationError(GlobalMessages.CONSULTATION_NOT_RECHARGEABLE)

    payment = Payment(
        payment_type=PaymentType.CALL_RECHARGE,
        patient_session_id=identity.session_id,
        consultation_id=consultation.id,
        call_minutes=request.minutes,
        amount=RECHARGE_PACKAGES[request.minutes],
        phone_number=request.phone_number,
        idempotency_key=request.idempotency_key,
        status=PaymentStatus.PENDING,
    )
    return await _start_payment(session, gateway, identity, payment, f"{request.minutes} min")


async def get_payment_status(
    session: AsyncSession,
    identity: PatientIdentity,
    checkout_request_id: str,
) -> Payment:
    result = await session.execute(
        select(Payment).where(Payment.mpesa_checkout_request_id == checkout_request_id)
    )
    payment = result.scalar_one_or_none()
    if payment is None or payment.patient_session_id != identity.session_id:
        raise NotFound(GlobalMessages.PAYMENT_NOT_FOUND)
    return payment


# ============================================================================
# RECONCILIATION
# ============================================================================

async def apply_payment_result(
    session: AsyncSession,
    payment: Payment,
    result_code: int,
    result_desc: str,
    transaction_id: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Settle a pending payment with the gateway's final result.

    On success the status change and the entitlement (service access grant,
    or recharge record plus minute increment) commit together, so a failure
    leaves the payment pending for the next delivery or sweep. Returns False
    when the payment was no longer pending.
    """
    now = now or utcnow()

    if result_code != 0:
        applied = await transition(
            session, Payment, payment.id, [PaymentStatus.PENDING], PaymentStatus.FAILED,
            failure_reason=result_desc or "Payment failed", failed_at=now,
        )
        await session.commit()
        if applied:
            await log_event(
                "reconcile_payment",
                "payment_failed",
                level="warn",
                metadata={"payment_id": str(payment.id), "result_code": result_code},
                error_message=result_desc,
            )
        return applied

    try:
        applied = await transition(
            session, Payment, payment.id, [PaymentStatus.PENDING], PaymentStatus.COMPLETED,
            transaction_id=transaction_id, completed_at=now,
        )
        if not applied:
            await session.rollback()
            return False

        if payment.payment_type is PaymentType.SERVICE_ACCESS:
            session.add(ServiceAccessPayment(
                payment_id=payment.id,
                patient_session_id=payment.patient_session_id,
                service_type=payment.service_type,
                amount=payment.amount,
                access_granted=True,
                expires_at=now + timedelta(hours=settings.SERVICE_ACCESS_TTL_HOURS),
            ))
            title = "Payment Confirmed"
            body = f"Your payment of KES {payment.amount} was received. You can now start your consultation."
        else:
            session.add(CallRechargePayment(
                payment_id=payment.id,
                patient_session_id=payment.patient_session_id,
                consultation_id=payment.consultation_id,
                additional_minutes=payment.call_minutes,
                amount=payment.amount,
            ))
            await session.execute(
                update(Consultation)
                .where(Consultation.id == payment.consultation_id)
                .values(remaining_call_minutes=Consultation.remaining_call_minutes + payment.call_minutes)
                .execution_options(synchronize_session=False)
            )
            title = "Payment Confirmed"
            body = f"{payment.call_minutes} call minutes were added to your consultation."

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await log_event(
        "reconcile_payment",
        "payment_completed",
        metadata={
            "payment_id": str(payment.id),
            "payment_type": payment.payment_type.value,
            "transaction_id": transaction_id,
        },
    )
    await dispatch(
        background_tasks,
        NotificationTarget.session(payment.patient_session_id),
        title,
        body,
        "payment_confirmed",
        {"payment_id": str(payment.id), "amount": payment.amount},
    )
    return True


async def reconcile_callback(
    session: AsyncSession,
    payload: Any,
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    """
    Handle an M-Pesa STK callback. Never raises: the sender always gets an
    acknowledgement and problems are left in the logs for follow-up.
    """
    try:
        callback = MpesaCallbackPayload.model_validate(payload).body.stk_callback
    except PayloadError as e:
        await log_event(
            "mpesa_callback", "invalid_payload", level="error", error_message=str(e)
        )
        return

    try:
        result = await session.execute(
            select(Payment)
            .where(Payment.mpesa_checkout_request_id == callback.checkout_request_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
    except Exception as e:
        await log_event(
            "mpesa_callback",
            "lookup_failed",
            level="error",
            metadata={"checkout_request_id": callback.checkout_request_id},
            error_message=str(e),
        )
        return

    if payment is None:
        await log_event(
            "mpesa_callback",
            "payment_not_found",
            level="warn",
            metadata={"checkout_request_id": callback.checkout_request_id},
        )
        return

    if payment.status is not PaymentStatus.PENDING:
        logger.info(f"Payment {payment.id} already {payment.status.value}, ignoring callback")
        return

    payment_id = payment.id
    receipt = callback.metadata_value("MpesaReceiptNumber")
    try:
        await apply_payment_result(
            session,
            payment,
            callback.result_code,
            callback.result_desc,
            transaction_id=str(receipt) if receipt is not None else None,
            background_tasks=background_tasks,
        )
    except Exception as e:
        await log_event(
            "mpesa_callback",
            "reconcile_failed",
            level="error",
            metadata={"payment_id": str(payment_id), "checkout_request_id": callback.checkout_request_id},
            error_message=str(e),
        )


async def reconcile_stale_payments(
    session: AsyncSession,
    gateway: MpesaGateway,
    now: Optional[datetime] = None,
    older_than_minutes: Optional[int] = None,
) -> ReconcileSummary:
    """
    Settle payments still pending after ``older_than_minutes`` by asking the
    gateway for their final status. Covers callbacks that were lost or failed
    to apply. Payments that never reached the gateway are marked failed.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=older_than_minutes or settings.PAYMENT_RECONCILE_AFTER_MINUTES)
    summary = ReconcileSummary()

    result = await session.execute(
        select(Payment)
        .where(Payment.status == PaymentStatus.PENDING, Payment.created_at <= cutoff)
        .order_by(Payment.created_at)
    )
    payment_ids = [payment.id for payment in result.scalars().all()]

    for payment_id in payment_ids:
        summary.checked += 1
        try:
            # Re-read: an earlier rollback may have expired loaded rows
            payment = await session.get(Payment, payment_id, populate_existing=True)
            if payment is None or payment.status is not PaymentStatus.PENDING:
                continue

            if not payment.mpesa_checkout_request_id:
                if await apply_payment_result(
                    session, payment, 1, "Gateway request was never confirmed", now=now
                ):
                    summary.failed += 1
                continue

            status = await gateway.query_stk_status(payment.mpesa_checkout_request_id)
            if status is None:
                summary.still_pending += 1
                continue

            applied = await apply_payment_result(
                session, payment, status.result_code, status.result_desc, now=now
            )
            if applied and status.result_code == 0:
                summary.completed += 1
            elif applied:
                summary.failed += 1
        except Exception as e:
            summary.errors += 1
            await log_event(
                "reconcile_stale_payments",
                "payment_check_failed",
                level="error",
                metadata={"payment_id": str(payment_id)},
                error_message=str(e),
            )

    logger.info(f"Payment reconciliation: {summary.model_dump()}")
    return summary
