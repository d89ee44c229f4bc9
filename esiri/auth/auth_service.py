# esiri/auth/auth_service.py

from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

import jwt
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.common.config import settings
from esiri.common.errors import Unauthorized
from esiri.common.utils.global_functions import ensure_utc, generate_patient_code, utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import PatientSession, UserRole
from esiri.auth.schemas import PatientIdentity


def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    """Create a JWT token including an expiration date."""
    to_encode = data.copy()
    expire = utcnow() + (expires_delta if expires_delta else timedelta(minutes=15))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def create_patient_token(session_id: UUID, expires_at: datetime, now: Optional[datetime] = None) -> str:
    """Patient token valid until the session itself expires."""
    now = now or utcnow()
    return create_access_token(
        {"sub": str(session_id), "session_id": str(session_id), "role": UserRole.PATIENT.value},
        expires_delta=ensure_utc(expires_at) - now,
    )


async def create_patient_session(
    db: AsyncSession,
    push_token: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> Tuple[PatientSession, str]:
    """Start an anonymous patient session and sign its token."""
    now = utcnow()
    patient_session = PatientSession(
        patient_code=generate_patient_code(),
        is_active=True,
        expires_at=now + timedelta(hours=settings.PATIENT_SESSION_HOURS),
        push_token=push_token,
    )
    db.add(patient_session)
    await db.commit()
    await db.refresh(patient_session)

    await log_event(
        "create_patient_session",
        "session_created",
        metadata={"patient_code": patient_session.patient_code},
        ip_address=client_ip,
    )
    return patient_session, create_patient_token(patient_session.id, patient_session.expires_at, now)


async def extend_session(
    db: AsyncSession,
    identity: PatientIdentity,
    extend_hours: int,
    now: Optional[datetime] = None,
) -> Tuple[datetime, str]:
    """
    Push the session expiry out by ``extend_hours``.

    Hours stack on the current expiry and the result never exceeds
    now + MAX_SESSION_DAYS. Over HTTP the admission gate has already turned
    lapsed sessions away; direct callers such as support tooling may revive
    an active but lapsed session, in which case the hours count from now.
    """
    now = now or utcnow()
    patient_session = await db.get(PatientSession, identity.session_id)
    if patient_session is None or not patient_session.is_active:
        raise Unauthorized(GlobalMessages.SESSION_EXPIRED)

    base = max(ensure_utc(patient_session.expires_at), now)
    new_expiry = min(
        base + timedelta(hours=extend_hours),
        now + timedelta(days=settings.MAX_SESSION_DAYS),
    )

    result = await db.execute(
        update(PatientSession)
        .where(PatientSession.id == identity.session_id, PatientSession.is_active.is_(True))
        .values(expires_at=new_expiry, last_extended_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Unauthorized(GlobalMessages.SESSION_EXPIRED)
    await db.commit()

    await log_event(
        "extend_session",
        "session_extended",
        identity=identity,
        metadata={"extend_hours": extend_hours, "expires_at": new_expiry.isoformat()},
    )
    return new_expiry, create_patient_token(identity.session_id, new_expiry, now)
