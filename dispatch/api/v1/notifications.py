from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Optional
from dispatch.database import get_db
from dispatch.api.deps import get_current_user, get_event_bus
from dispatch.config import settings
from dispatch.events import EventBus, serialize_notification
from dispatch.exceptions import ForbiddenError, NotFoundError, ValidationError
from dispatch.models.notification import Notification
from dispatch.models.user import User
from dispatch.schemas.common import ResponseModel
from dispatch.services.channels import (
    CHANNEL_ROLES, SSE_HEADERS, SSE_MEDIA_TYPE, build_notification_channel
)
from dispatch.utils.pagination import paginate

router = APIRouter()


@router.get("", response_model=ResponseModel)
def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get user notifications. Supports ?unread=true for unread-only."""
    query = db.query(Notification).filter(Notification.recipient_id == current_user.id)
    if unread is not None:
        query = query.filter(Notification.is_read == (not unread))
    total = query.count()
    offset = (page - 1) * limit
    notifications = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
    unread_count = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_read.is_(False)
    ).count()
    return ResponseModel(
        success=True,
        data={
            "notifications": [serialize_notification(n) for n in notifications],
            "unreadCount": unread_count,
            "pagination": paginate(page, limit, total),
        }
    )


@router.put("/read-all", response_model=ResponseModel)
def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mark all notifications of the current user as read."""
    db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_read.is_(False)
    ).update({"is_read": True})
    db.commit()
    return ResponseModel(success=True, message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=ResponseModel)
def mark_notification_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mark one notification as read."""
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == current_user.id
    ).first()
    if not notification:
        raise NotFoundError("Notification")
    notification.is_read = True
    db.commit()
    return ResponseModel(success=True, message="Notification marked as read")


@router.get("/sse")
async def notification_stream(
    role: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus)
):
    """
    Live order and notification events for the caller, as Server-Sent Events.
    EventSource clients authenticate with ?token=.
    """
    requested = (role or "").strip().lower()
    if requested not in CHANNEL_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(CHANNEL_ROLES)}")

    actual = current_user.role.value.lower()
    if actual != "admin" and requested != actual:
        raise ForbiddenError("Requested role does not match your account")

    channel = build_notification_channel(
        bus,
        requested,
        current_user.id,
        heartbeat_interval=settings.SSE_HEARTBEAT_INTERVAL_SECONDS,
        max_lifetime=settings.NOTIFICATION_STREAM_MAX_SECONDS,
        viewer_role=actual,
        max_queued_frames=settings.SSE_MAX_QUEUED_FRAMES,
    )
    return StreamingResponse(channel.stream(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)
