# esiri/common/integrations/push_client.py
"""HTTP client for the push delivery provider."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from esiri.common.config import settings

logger = logging.getLogger(__name__)


async def send_push(
    tokens: List[str],
    title: str,
    body: str,
    notification_type: str,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    """
    Deliver a push message to device tokens. Returns the number of tokens the
    provider accepted; 0 when no provider is configured or there is nobody to send to.
    Raises httpx.HTTPError on transport or provider failure.
    """
    if not settings.PUSH_PROVIDER_URL or not tokens:
        return 0

    # Push payload data values must be strings
    payload_data = {key: str(value) for key, value in (data or {}).items()}
    payload_data["type"] = notification_type

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        response = await client.post(
            settings.PUSH_PROVIDER_URL,
            headers={"Authorization": f"key={settings.PUSH_PROVIDER_KEY}"},
            json={
                "registration_ids": tokens,
                "notification": {"title": title, "body": body},
                "data": payload_data,
                "priority": "high",
            },
        )
        response.raise_for_status()
        result = response.json()

    sent = int(result.get("success", len(tokens)))
    logger.info(f"Push sent to {sent}/{len(tokens)} devices: {title}")
    return sent
