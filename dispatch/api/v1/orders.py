"""
Order endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.api.deps import get_current_user, require_roles, get_event_bus
from dispatch.events import EventBus, serialize_order
from dispatch.models.user import User, UserRole
from dispatch.schemas.common import ResponseModel
from dispatch.schemas.order import OrderCreate, OrderStatusUpdate
from dispatch.services import order_service

router = APIRouter()


@router.post("", response_model=ResponseModel, status_code=201)
async def create_order(
    order_data: OrderCreate,
    current_user: User = Depends(require_roles(UserRole.CUSTOMER)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    order = order_service.create_order(db, bus, current_user, order_data)
    return ResponseModel(
        success=True,
        data={"order": serialize_order(order)},
        message="Order placed successfully"
    )


@router.get("/{order_id}", response_model=ResponseModel)
def get_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    order = order_service.get_order_or_404(db, order_id)
    order_service.ensure_can_view(order, current_user)
    return ResponseModel(success=True, data={"order": serialize_order(order)})


@router.patch("/{order_id}/status", response_model=ResponseModel)
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.VENDOR)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """Kitchen side transitions: ACCEPTED, PREPARING, READY, CANCELLED"""
    new_status = order_service.parse_status(payload.status)
    order = order_service.get_order_or_404(db, order_id)
    order_service.ensure_store_owner(db, order, current_user)
    order = order_service.update_status_by_vendor(db, bus, order, new_status, reason=payload.reason)
    return ResponseModel(
        success=True,
        data={"order": serialize_order(order)},
        message=f"Order status updated to {order.status.value}"
    )
