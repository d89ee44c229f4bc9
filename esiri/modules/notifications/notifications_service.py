# esiri/modules/notifications/notifications_service.py
"""Notification fan-out and the in-app notification inbox."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import Identity, PatientIdentity
from esiri.common.database.database import session_scope
from esiri.common.integrations.push_client import send_push
from esiri.models.models import (
    DoctorProfile, Notification, PatientSession, RecipientType, ServiceType,
)

logger = logging.getLogger(__name__)


# ============================================================================
# FAN-OUT
# ============================================================================

@dataclass(frozen=True)
class NotificationTarget:
    """Exactly one of user_id, session_id or service_type is set."""
    user_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    service_type: Optional[ServiceType] = None

    @classmethod
    def user(cls, user_id: UUID) -> "NotificationTarget":
        return cls(user_id=user_id)

    @classmethod
    def session(cls, session_id: UUID) -> "NotificationTarget":
        return cls(session_id=session_id)

    @classmethod
    def doctors(cls, service_type: ServiceType) -> "NotificationTarget":
        """Verified, available doctors serving ``service_type``."""
        return cls(service_type=service_type)


@dataclass(frozen=True)
class _Recipient:
    recipient_id: UUID
    recipient_type: RecipientType
    push_token: Optional[str]


async def _resolve_recipients(session: AsyncSession, target: NotificationTarget) -> List[_Recipient]:
    if target.session_id is not None:
        patient_session = await session.get(PatientSession, target.session_id)
        token = patient_session.push_token if patient_session else None
        return [_Recipient(target.session_id, RecipientType.PATIENT, token)]

    if target.user_id is not None:
        doctor = await session.get(DoctorProfile, target.user_id)
        if doctor:
            return [_Recipient(doctor.id, RecipientType.DOCTOR, doctor.push_token)]
        return [_Recipient(target.user_id, RecipientType.PORTAL, None)]

    if target.service_type is not None:
        result = await session.execute(
            select(DoctorProfile).where(
                DoctorProfile.service_type == target.service_type,
                DoctorProfile.is_verified.is_(True),
                DoctorProfile.is_available.is_(True),
            )
        )
        return [
            _Recipient(doctor.id, RecipientType.DOCTOR, doctor.push_token)
            for doctor in result.scalars().all()
        ]

    return []


async def notify(
    target: NotificationTarget,
    title: str,
    body: str,
    notification_type: str = "general",
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """
    Store an in-app notification for every recipient of ``target`` and push
    to those with a device token. Best-effort: failures are logged and the
    number of stored notifications is returned. Never raises.
    """
    try:
        async with session_scope() as session:
            recipients = await _resolve_recipients(session, target)
            for recipient in recipients:
                session.add(Notification(
                    recipient_id=recipient.recipient_id,
                    recipient_type=recipient.recipient_type,
                    title=title,
                    message=body,
                    type=notification_type,
                    data=metadata or {},
                ))
            await session.commit()
    except Exception as e:
        logger.error(f"Failed to store notification '{title}' for {target}: {e}")
        return 0

    tokens = [r.push_token for r in recipients if r.push_token]
    if not tokens:
        logger.info(f"No push tokens for '{title}', stored {len(recipients)} in-app notification(s)")
        return len(recipients)

    try:
        await send_push(tokens, title, body, notification_type, metadata)
    except Exception as e:
        logger.warning(f"Push delivery failed for '{title}': {e}")
    return len(recipients)


async def dispatch(
    background_tasks: Optional[BackgroundTasks],
    target: NotificationTarget,
    title: str,
    body: str,
    notification_type: str = "general",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Emit a notification after a committed transition. Inside a request it is
    queued to run once the response is sent; elsewhere (cron, webhooks without
    a task queue) it is delivered inline.
    """
    if background_tasks is None:
        await notify(target, title, body, notification_type, metadata)
    else:
        background_tasks.add_task(notify, target, title, body, notification_type, metadata)


# ============================================================================
# INBOX
# ============================================================================

def recipient_id_for(identity: Identity) -> UUID:
    if isinstance(identity, PatientIdentity):
        return identity.session_id
    return identity.user_id


async def get_notifications(
    db: AsyncSession,
    identity: Identity,
    limit: int = 20,
    unread_only: bool = False
) -> tuple[List[Notification], int]:
    """Get notifications for the caller with unread count."""
    recipient_id = recipient_id_for(identity)

    query = select(Notification).where(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(desc(Notification.created_at)).limit(limit)

    result = await db.execute(query)
    notifications = result.scalars().all()

    count_result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False)
        )
    )
    unread_count = count_result.scalar() or 0

    return list(notifications), unread_count


async def mark_notifications_read(db: AsyncSession, identity: Identity, notification_ids: List[UUID]) -> int:
    """Mark notifications as read. Returns count of updated notifications."""
    result = await db.execute(
        update(Notification)
        .where(
            Notification.id.in_(notification_ids),
            Notification.recipient_id == recipient_id_for(identity)
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


async def mark_all_read(db: AsyncSession, identity: Identity) -> int:
    result = await db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id_for(identity),
            Notification.is_read.is_(False)
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


async def delete_notification(db: AsyncSession, identity: Identity, notification_id: UUID) -> bool:
    """Delete a notification. Returns True if deleted."""
    result = await db.execute(
        delete(Notification)
        .where(
            Notification.id == notification_id,
            Notification.recipient_id == recipient_id_for(identity)
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1
