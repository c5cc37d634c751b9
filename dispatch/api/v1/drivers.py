"""
Driver deliveries endpoints
Drivers browse open deliveries, accept them and report progress
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.api.deps import require_roles, get_event_bus
from dispatch.events import EventBus, serialize_order
from dispatch.exceptions import ValidationError
from dispatch.models.order import Order, OrderStatus
from dispatch.models.user import User, UserRole
from dispatch.schemas.common import ResponseModel
from dispatch.schemas.delivery import AcceptDeliveryRequest, DeliveryStatusUpdate
from dispatch.services import assignment_service, order_service
from dispatch.utils.pagination import paginate

router = APIRouter()


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}, expected an ISO date")


@router.get("/deliveries", response_model=ResponseModel)
def get_deliveries(
    available: bool = False,
    status: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_roles(UserRole.DRIVER, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """
    available=true lists READY orders nobody has taken, oldest first.
    Otherwise the caller's own deliveries, newest first (admins see all).
    """
    query = db.query(Order)
    if available:
        query = query.filter(Order.status == OrderStatus.READY, Order.driver_id.is_(None))
        ordering = Order.created_at.asc()
    else:
        if current_user.role == UserRole.DRIVER:
            query = query.filter(Order.driver_id == current_user.id)
        else:
            query = query.filter(Order.driver_id.isnot(None))
        ordering = Order.created_at.desc()

    if status:
        query = query.filter(Order.status == order_service.parse_status(status))

    date_from = _parse_date(dateFrom, "dateFrom")
    date_to = _parse_date(dateTo, "dateTo")
    if date_from:
        query = query.filter(Order.created_at >= date_from)
    if date_to:
        query = query.filter(Order.created_at <= date_to)

    total = query.count()
    offset = (page - 1) * limit
    orders = query.order_by(ordering, Order.id).offset(offset).limit(limit).all()

    return ResponseModel(
        success=True,
        data={
            "deliveries": [serialize_order(order) for order in orders],
            "pagination": paginate(page, limit, total),
        }
    )


@router.post("/deliveries", response_model=ResponseModel)
async def accept_delivery(
    payload: AcceptDeliveryRequest,
    current_user: User = Depends(require_roles(UserRole.DRIVER)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """Driver takes a READY order for themselves"""
    order = assignment_service.accept_delivery(db, bus, payload.orderId, current_user)
    return ResponseModel(
        success=True,
        data={"order": serialize_order(order)},
        message="Delivery accepted successfully"
    )


@router.patch("/deliveries/{order_id}/status", response_model=ResponseModel)
async def update_delivery_status(
    order_id: str,
    payload: DeliveryStatusUpdate,
    current_user: User = Depends(require_roles(UserRole.DRIVER)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """Mark an assigned delivery as picked up (IN_DELIVERY) or DELIVERED"""
    new_status = order_service.parse_status(payload.status)
    order = order_service.get_order_or_404(db, order_id)
    order = order_service.update_status_by_driver(db, bus, order, current_user, new_status)
    return ResponseModel(
        success=True,
        data={"order": serialize_order(order)},
        message="Delivery status updated"
    )
