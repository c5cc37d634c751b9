"""
Helper to create in-app notifications for order and delivery updates.
"""
from typing import Optional
from sqlalchemy.orm import Session
from dispatch.events import EventBus, emit_notification_sent
from dispatch.models.notification import Notification


def create_notification(
    db: Session,
    bus: Optional[EventBus],
    recipient_id: str,
    type: str,
    title: str,
    message: str,
    recipient_role: Optional[str] = None,
    related_order_id: Optional[str] = None,
    data: Optional[dict] = None,
) -> Notification:
    """
    Create a notification for a user and publish it to open notification channels.
    Commits the notification; caller may be inside a larger transaction.
    type: e.g. "ORDER_UPDATE", "DELIVERY_UPDATE".
    data: optional payload, e.g. {"order_id": "...", "status": "..."}.
    """
    notif = Notification(
        recipient_id=recipient_id,
        recipient_role=recipient_role,
        type=type,
        title=title,
        message=message,
        related_order_id=related_order_id,
        data=data or {},
    )
    db.add(notif)
    db.commit()
    db.refresh(notif)

    if bus is not None:
        emit_notification_sent(bus, notif)
    return notif
