# esiri/modules/notifications/notifications_controller.py

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.dependencies import admit
from esiri.auth.schemas import Identity
from esiri.common.database.database import get_db_session
from esiri.common.errors import NotFound
from esiri.common.schemas import ApiResponse
from esiri.common.utils.global_messages import GlobalMessages
from esiri.models.models import UserRole

from . import notifications_service as service
from .schemas import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationResponse,
    NotificationsListResponse,
    SendNotificationRequest,
    SendNotificationResponse,
)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=ApiResponse[NotificationsListResponse])
async def get_notifications(
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    """Get the caller's notifications."""
    notifications, unread_count = await service.get_notifications(db, identity, limit, unread_only)
    return ApiResponse(data=NotificationsListResponse(
        notifications=[
            NotificationResponse(
                id=n.id,
                title=n.title,
                message=n.message,
                type=n.type,
                is_read=n.is_read,
                data=n.data,
                created_at=n.created_at,
            )
            for n in notifications
        ],
        unread_count=unread_count,
    ))


@router.post("/mark-read", response_model=ApiResponse[MarkReadResponse])
async def mark_read(
    request: MarkReadRequest,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    count = await service.mark_notifications_read(db, identity, request.notification_ids)
    return ApiResponse(data=MarkReadResponse(marked_count=count))


@router.post("/mark-all-read", response_model=ApiResponse[MarkReadResponse])
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    count = await service.mark_all_read(db, identity)
    return ApiResponse(data=MarkReadResponse(marked_count=count))


@router.delete("/{notification_id}", response_model=ApiResponse[dict])
async def delete_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    identity: Identity = Depends(admit("read")),
):
    deleted = await service.delete_notification(db, identity, notification_id)
    if not deleted:
        raise NotFound(GlobalMessages.NOTIFICATION_NOT_FOUND)
    return ApiResponse(data={"deleted": True})


@router.post("/send", response_model=ApiResponse[SendNotificationResponse])
async def send_notification(
    request: SendNotificationRequest,
    identity: Identity = Depends(admit("notification", UserRole.DOCTOR, UserRole.ADMIN, UserRole.HR)),
):
    """Send a notification to a user, a patient session or a doctor service group."""
    target = service.NotificationTarget(
        user_id=request.user_id,
        session_id=request.session_id,
        service_type=request.service_type,
    )
    recipients = await service.notify(target, request.title, request.message, request.type, request.data)
    return ApiResponse(data=SendNotificationResponse(recipients=recipients))
