# esiri/auth/dependencies.py

import hmac
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
import jwt

from esiri.common.config import settings
from esiri.common.database.database import get_db_session
from esiri.common.errors import Forbidden, RateLimited, Unauthorized
from esiri.common.rate_limit.rate_limiter import RATE_LIMIT_PROFILES, acquire_profile
from esiri.common.utils.global_functions import ensure_utc, get_client_ip, utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import PatientSession, UserRole
from esiri.auth.schemas import (
    DoctorIdentity, Identity, PatientIdentity, PortalIdentity, identity_key,
)

bearer_scheme = HTTPBearer(auto_error=False)


def _claim_uuid(payload: dict, claim: str) -> UUID:
    try:
        return UUID(str(payload.get(claim)))
    except ValueError:
        raise Unauthorized(GlobalMessages.INVALID_TOKEN)


async def resolve_identity(token: str, db: AsyncSession) -> Identity:
    """Verify a bearer token and turn its claims into an Identity."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        raise Unauthorized(GlobalMessages.INVALID_TOKEN)

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise Unauthorized(GlobalMessages.INVALID_TOKEN)

    if role is UserRole.PATIENT:
        session_id = _claim_uuid(payload, "session_id")
        patient_session = await db.get(PatientSession, session_id)
        if (
            patient_session is None
            or not patient_session.is_active
            or ensure_utc(patient_session.expires_at) <= utcnow()
        ):
            raise Unauthorized(GlobalMessages.SESSION_EXPIRED)
        return PatientIdentity(session_id=session_id)

    user_id = _claim_uuid(payload, "sub")
    if role is UserRole.DOCTOR:
        return DoctorIdentity(user_id=user_id)
    return PortalIdentity(user_id=user_id, role=role)


async def _enforce_limit(db: AsyncSession, bucket: str, key: str) -> None:
    if not await acquire_profile(db, bucket, key):
        raise RateLimited(
            GlobalMessages.RATE_LIMITED,
            retry_after=RATE_LIMIT_PROFILES[bucket].window_seconds,
            metadata={"bucket": bucket},
        )


def admit(bucket: str, *roles: UserRole):
    """
    Admission gate for authenticated endpoints.

    Resolves the caller, checks ``roles`` when given, then counts the attempt
    against ``bucket`` for that caller. The resolved identity is also stored on
    ``request.state`` for error logging.
    """
    async def dependency(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        db: AsyncSession = Depends(get_db_session),
    ) -> Identity:
        if credentials is None:
            raise Unauthorized(GlobalMessages.AUTH_HEADER_MISSING)

        identity = await resolve_identity(credentials.credentials, db)
        request.state.identity = identity

        if roles and identity.role not in roles:
            raise Forbidden(
                GlobalMessages.INSUFFICIENT_ROLE,
                metadata={"role": identity.role.value, "required": [r.value for r in roles]},
            )

        await _enforce_limit(db, bucket, identity_key(identity))
        return identity

    return dependency


def limit_by_ip(bucket: str):
    """Rate limit an unauthenticated endpoint by client IP."""
    async def dependency(request: Request, db: AsyncSession = Depends(get_db_session)) -> str:
        client_ip = get_client_ip(request)
        await _enforce_limit(db, bucket, client_ip)
        return client_ip

    return dependency


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Cron workers authenticate with the shared X-Cron-Secret header."""
    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode(), settings.CRON_SECRET.encode()
    ):
        raise Unauthorized(GlobalMessages.INVALID_CRON_SECRET)
