# esiri/common/integrations/mpesa_client.py
"""M-Pesa Daraja STK push client (mock, sandbox and production)."""

import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from esiri.common.config import settings
from esiri.common.errors import UpstreamError
from esiri.common.utils.global_messages import GlobalMessages

logger = logging.getLogger(__name__)

EAT = timezone(timedelta(hours=3))

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

# Daraja answers a status query with this code while the customer has not yet responded
STILL_PROCESSING_CODE = "500.001.1001"


@dataclass(frozen=True)
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: Optional[str] = None


@dataclass(frozen=True)
class StkQueryResult:
    result_code: int
    result_desc: str


class MpesaGateway:
    def __init__(
        self,
        environment: str = None,
        consumer_key: str = None,
        consumer_secret: str = None,
        shortcode: str = None,
        passkey: str = None,
        callback_url: str = None,
        timeout: float = None,
    ):
        self.environment = environment or settings.PAYMENT_ENV
        self.consumer_key = consumer_key if consumer_key is not None else settings.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else settings.MPESA_CONSUMER_SECRET
        self.shortcode = shortcode or settings.MPESA_SHORTCODE
        self.passkey = passkey if passkey is not None else settings.MPESA_PASSKEY
        self.callback_url = callback_url or settings.MPESA_CALLBACK_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    @property
    def is_mock(self) -> bool:
        return self.environment == "mock"

    @property
    def base_url(self) -> str:
        return BASE_URLS.get(self.environment, BASE_URLS["sandbox"])

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode()
        return base64.b64encode(raw).decode()

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        response.raise_for_status()
        return response.json()["access_token"]

    async def initiate_stk_push(
        self,
        phone_number: str,
        amount: int,
        account_reference: str,
        description: str,
        idempotency_key: str,
    ) -> StkPushResult:
        """Ask the customer's handset to approve a payment."""
        if self.is_mock:
            result = StkPushResult(
                checkout_request_id=f"mock-checkout-{uuid.uuid4()}",
                merchant_request_id=f"mock-merchant-{uuid.uuid4()}",
            )
            logger.info(f"Mock STK push for {account_reference}: {result.checkout_request_id}")
            return result

        timestamp = datetime.now(EAT).strftime("%Y%m%d%H%M%S")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                token = await self._access_token(client)
                response = await client.post(
                    f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Idempotency-Key": idempotency_key,
                    },
                    json={
                        "BusinessShortCode": self.shortcode,
                        "Password": self._password(timestamp),
                        "Timestamp": timestamp,
                        "TransactionType": "CustomerPayBillOnline",
                        "Amount": amount,
                        "PartyA": phone_number,
                        "PartyB": self.shortcode,
                        "PhoneNumber": phone_number,
                        "CallBackURL": self.callback_url,
                        "AccountReference": account_reference[:12],
                        "TransactionDesc": description[:13],
                    },
                )
                body = response.json()
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"STK push request failed: {e}")
            raise UpstreamError(GlobalMessages.PAYMENT_GATEWAY_FAILED)

        if str(body.get("ResponseCode")) != "0":
            logger.error(f"STK push rejected: {body}")
            raise UpstreamError(
                body.get("errorMessage") or body.get("ResponseDescription") or GlobalMessages.PAYMENT_GATEWAY_FAILED
            )

        return StkPushResult(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
        )

    async def query_stk_status(self, checkout_request_id: str) -> Optional[StkQueryResult]:
        """Final result of an STK push, or None while the customer has not responded."""
        if self.is_mock:
            return StkQueryResult(result_code=0, result_desc="The service request is processed successfully.")

        timestamp = datetime.now(EAT).strftime("%Y%m%d%H%M%S")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                token = await self._access_token(client)
                response = await client.post(
                    f"{self.base_url}/mpesa/stkpushquery/v1/query",
                    headers={"Authorization": f"Bearer {token}"},
                    json={
                        "BusinessShortCode": self.shortcode,
                        "Password": self._password(timestamp),
                        "Timestamp": timestamp,
                        "CheckoutRequestID": checkout_request_id,
                    },
                )
                body = response.json()
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise UpstreamError(f"STK status query failed: {e}")

        if body.get("errorCode") == STILL_PROCESSING_CODE:
            return None
        if "ResultCode" not in body:
            raise UpstreamError(f"Unexpected STK status response: {body}")
        return StkQueryResult(result_code=int(body["ResultCode"]), result_desc=str(body.get("ResultDesc", "")))


_gateway: Optional[MpesaGateway] = None


def get_payment_gateway() -> MpesaGateway:
    """FastAPI dependency returning the configured gateway."""
    global _gateway
    if _gateway is None:
        _gateway = MpesaGateway()
    return _gateway
