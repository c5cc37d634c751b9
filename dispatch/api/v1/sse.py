"""
Live delivery tracking stream
"""
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.api.deps import get_current_user, get_event_bus
from dispatch.config import settings
from dispatch.events import EventBus
from dispatch.exceptions import ValidationError
from dispatch.models.user import User
from dispatch.services import location_service, order_service
from dispatch.services.channels import SSE_HEADERS, SSE_MEDIA_TYPE, build_location_channel

router = APIRouter()


@router.get("/driver-location")
async def driver_location_stream(
    orderId: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """
    Stream the position of the driver delivering an order.
    Open to the order's customer, vendor and driver, and to admins.
    """
    if not orderId:
        raise ValidationError("orderId is required")

    order = order_service.get_order_or_404(db, orderId)
    order_service.ensure_can_view(order, current_user)

    # Everything the stream needs is read here; the stream itself holds no session
    initial_location = None
    if order.driver_id:
        location = location_service.get_location_for_driver(db, order.driver_id)
        if location is not None:
            initial_location = location_service.serialize_location(location)

    channel = build_location_channel(
        bus,
        order.id,
        current_user.role.value.lower(),
        current_user.id,
        order.driver_id,
        heartbeat_interval=settings.SSE_HEARTBEAT_INTERVAL_SECONDS,
        max_lifetime=settings.TRACKING_STREAM_MAX_SECONDS,
        initial_location=initial_location,
        max_queued_frames=settings.SSE_MAX_QUEUED_FRAMES,
    )
    return StreamingResponse(channel.stream(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)
