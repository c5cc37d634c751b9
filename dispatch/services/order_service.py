"""
Order lookups, ownership checks and status transitions
"""
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional
from sqlalchemy.orm import Session
from dispatch.events import EventBus, emit_order_created, emit_order_updated, emit_order_delivered
from dispatch.exceptions import ForbiddenError, NotFoundError, ValidationError
from dispatch.models.order import Order, OrderStatus
from dispatch.models.store import Store
from dispatch.models.user import User, UserRole
from dispatch.schemas.order import OrderCreate
from dispatch.services.notification_service import create_notification

logger = logging.getLogger(__name__)

# Transitions a vendor (or admin) may apply from the kitchen side
VENDOR_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.CANCELLED}),
}

# Transitions the assigned driver may apply
DRIVER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.ASSIGNED: frozenset({OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED}),
    OrderStatus.IN_DELIVERY: frozenset({OrderStatus.DELIVERED}),
}

STATUS_MESSAGES = {
    OrderStatus.ACCEPTED: "Your order has been accepted by the store",
    OrderStatus.PREPARING: "Your order is being prepared",
    OrderStatus.READY: "Your order is ready and waiting for a driver",
    OrderStatus.IN_DELIVERY: "Your order is on the way",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value.strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def get_order_or_404(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order")
    return order


def ensure_can_view(order: Order, user: User) -> None:
    if user.role == UserRole.ADMIN or order.is_participant(user.id):
        return
    raise ForbiddenError("You do not have access to this order")


def ensure_store_owner(db: Session, order: Order, user: User) -> None:
    """Admins pass; vendors must own the store the order was placed with"""
    if user.role == UserRole.ADMIN:
        return
    store = db.query(Store).filter(Store.id == order.store_id).first() if order.store_id else None
    if user.role != UserRole.VENDOR or store is None or store.vendor_id != user.id:
        raise ForbiddenError("You can only manage orders of your own store")


def create_order(db: Session, bus: EventBus, customer: User, order_data: OrderCreate) -> Order:
    store = db.query(Store).filter(Store.id == order_data.storeId).first()
    if not store:
        raise NotFoundError("Store")

    order = Order(
        customer_id=customer.id,
        vendor_id=store.vendor_id,
        store_id=store.id,
        status=OrderStatus.PENDING,
        delivery_address=order_data.deliveryAddress,
        delivery_latitude=order_data.deliveryLatitude,
        delivery_longitude=order_data.deliveryLongitude,
        total=order_data.total,
        notes=order_data.notes,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Order %s created by customer %s for store %s", order.id, customer.id, store.id)

    emit_order_created(bus, order)
    create_notification(
        db, bus,
        recipient_id=store.vendor_id,
        recipient_role=UserRole.VENDOR.value,
        type="ORDER_UPDATE",
        title="New Order",
        message=f"New order received at {store.name}",
        related_order_id=order.id,
        data={"order_id": order.id, "status": order.status.value},
    )
    return order


def update_status_by_vendor(
    db: Session,
    bus: EventBus,
    order: Order,
    new_status: OrderStatus,
    reason: Optional[str] = None,
) -> Order:
    allowed = VENDOR_TRANSITIONS.get(order.status, frozenset())
    if new_status not in allowed:
        raise ValidationError(f"Cannot change order from {order.status.value} to {new_status.value}")

    order.status = new_status
    if new_status == OrderStatus.CANCELLED:
        order.driver_id = None
        order.cancelled_at = datetime.utcnow()
        if reason:
            order.notes = f"{order.notes or ''}\nCancelled: {reason}".strip()
    db.commit()
    db.refresh(order)

    emit_order_updated(bus, order)
    _notify_customer(db, bus, order)
    return order


def update_status_by_driver(db: Session, bus: EventBus, order: Order, driver: User, new_status: OrderStatus) -> Order:
    if order.driver_id != driver.id:
        raise ForbiddenError("Order not assigned to this driver")

    allowed = DRIVER_TRANSITIONS.get(order.status, frozenset())
    if new_status not in allowed:
        raise ValidationError("Invalid status for driver")

    order.status = new_status
    if new_status == OrderStatus.DELIVERED:
        order.delivered_at = datetime.utcnow()
    db.commit()
    db.refresh(order)
    logger.info("Driver %s moved order %s to %s", driver.id, order.id, new_status.value)

    emit_order_updated(bus, order)
    if new_status == OrderStatus.DELIVERED:
        emit_order_delivered(bus, order)
    _notify_customer(db, bus, order)
    return order


def _notify_customer(db: Session, bus: EventBus, order: Order) -> None:
    if not order.customer_id or order.status not in STATUS_MESSAGES:
        return
    create_notification(
        db, bus,
        recipient_id=order.customer_id,
        recipient_role=UserRole.CUSTOMER.value,
        type="ORDER_UPDATE",
        title="Order Update",
        message=STATUS_MESSAGES[order.status],
        related_order_id=order.id,
        data={"order_id": order.id, "status": order.status.value},
    )
