# esiri/modules/payments/schemas.py
"""Payments module Pydantic schemas."""

import re
from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import PaymentStatus, PaymentType, ServiceType

PHONE_PATTERN = re.compile(r"^254(7|1)\d{8}$")

# KES
SERVICE_PRICES = {
    ServiceType.NURSE: 500,
    ServiceType.CLINICAL_OFFICER: 800,
    ServiceType.PHARMACIST: 600,
    ServiceType.GP: 1200,
    ServiceType.SPECIALIST: 2500,
    ServiceType.PSYCHOLOGIST: 1500,
}

# minutes -> KES
RECHARGE_PACKAGES = {
    10: 200,
    30: 500,
    60: 900,
    120: 1500,
}


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class _PaymentRequest(BaseModel):
    phone_number: str
    idempotency_key: str = Field(min_length=8, max_length=64)

    @field_validator("phone_number")
    def valid_phone(cls, value: str) -> str:
        value = value.strip()
        if not PHONE_PATTERN.match(value):
            raise ValueError(GlobalMessages.INVALID_PHONE)
        return value


class ServiceAccessPaymentRequest(_PaymentRequest):
    service_type: ServiceType


class CallRechargeRequest(_PaymentRequest):
    consultation_id: UUID
    minutes: int

    @field_validator("minutes")
    def known_package(cls, value: int) -> int:
        if value not in RECHARGE_PACKAGES:
            raise ValueError(f"{GlobalMessages.INVALID_RECHARGE_PACKAGE} Choose one of {sorted(RECHARGE_PACKAGES)}")
        return value


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class PaymentInitiationResponse(BaseModel):
    payment_id: Optional[UUID] = None
    checkout_request_id: Optional[str] = None
    status: str
    amount: int
    access_expires_at: Optional[datetime] = None


class PaymentStatusResponse(BaseModel):
    payment_id: UUID
    payment_type: PaymentType
    status: PaymentStatus
    amount: int
    checkout_request_id: Optional[str] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ReconcileSummary(BaseModel):
    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0


# ============================================================================
# M-PESA CALLBACK
# ============================================================================

class CallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    items: List[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: Optional[str] = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    callback_metadata: Optional[CallbackMetadata] = Field(default=None, alias="CallbackMetadata")

    def metadata_value(self, name: str) -> Any:
        if not self.callback_metadata:
            return None
        for item in self.callback_metadata.items:
            if item.name == name:
                return item.value
        return None


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")


class MpesaCallbackPayload(BaseModel):
    body: CallbackBody = Field(alias="Body")
