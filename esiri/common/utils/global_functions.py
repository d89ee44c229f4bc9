# esiri/common/utils/global_functions.py
import random
import string
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request

from esiri.common.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores that drop the offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_client_ip(request: Request) -> str:
    """
    Client IP as seen by the outermost trusted proxy.

    With ``TRUSTED_PROXY_HOPS = 0`` forwarding headers are ignored and the
    socket peer is used (run uvicorn with --proxy-headers to have it rewrite
    the peer). Otherwise the address appended by the last trusted hop is
    taken from the right of X-Forwarded-For, so entries a client prepends
    itself are never read.
    """
    peer = request.client.host if request.client else "unknown"
    hops = settings.TRUSTED_PROXY_HOPS
    if hops <= 0:
        return peer

    forwarded = [
        part.strip()
        for part in request.headers.get("x-forwarded-for", "").split(",")
        if part.strip()
    ]
    if forwarded:
        return forwarded[-hops] if len(forwarded) >= hops else forwarded[0]
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


def generate_patient_code() -> str:
    """Patient-facing reference in the form ESR-XXXX-XXXX."""
    alphabet = string.ascii_uppercase + string.digits
    part = lambda: "".join(random.choices(alphabet, k=4))
    return f"ESR-{part()}-{part()}"


def mask_fingerprint(fingerprint: str) -> str:
    return f"{fingerprint[:8]}..."
