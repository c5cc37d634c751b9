"""
Driver assignment.

Two paths share this module:

* single order: bind one READY/ASSIGNED order to an explicit driver or to
  the first driver of the auto-assign pool (active, online, location updated
  within the freshness window, no active deliveries). Candidates are not
  ranked by distance; the pool order decides.
* batch: plan routes for many orders at once. Orders bound to a driver stay
  with that driver, the rest are dealt round-robin over drivers sorted by
  current workload, and every driver's orders are sequenced oldest first.
  Planning never writes to the database or emits events.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from dispatch.config import settings
from dispatch.events import EventBus, emit_order_assigned
from dispatch.exceptions import NotFoundError, ValidationError
from dispatch.models.driver_location import DriverLocation
from dispatch.models.order import Order, OrderStatus, ASSIGNABLE_STATUSES, ACTIVE_DELIVERY_STATUSES
from dispatch.models.user import User, UserRole
from dispatch.services.location_service import freshness_cutoff
from dispatch.services.notification_service import create_notification
from dispatch.services.order_service import ensure_store_owner, get_order_or_404

logger = logging.getLogger(__name__)

# Route estimates are flat per-delivery figures, not derived from geodata
MINUTES_PER_DELIVERY = 7
KM_PER_DELIVERY = 2.5


@dataclass
class DriverCandidate:
    driver_id: str
    name: str
    active_orders: int = 0


@dataclass
class PlannedOrder:
    order_id: str
    created_at: datetime


def active_order_counts(db: Session, driver_ids: Sequence[str]) -> Dict[str, int]:
    """Orders currently ASSIGNED or IN_DELIVERY per driver"""
    if not driver_ids:
        return {}
    rows = db.query(Order.driver_id, func.count(Order.id)).filter(
        Order.driver_id.in_(list(driver_ids)),
        Order.status.in_(ACTIVE_DELIVERY_STATUSES),
    ).group_by(Order.driver_id).all()
    return {driver_id: count for driver_id, count in rows}


def auto_assign_candidates(
    db: Session,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[DriverCandidate]:
    """Driver pool for single-order auto assignment, most recently seen first"""
    limit = limit or settings.AUTO_ASSIGN_CANDIDATE_LIMIT
    rows = db.query(User, DriverLocation).join(
        DriverLocation, DriverLocation.driver_id == User.id
    ).filter(
        User.role == UserRole.DRIVER,
        DriverLocation.is_active.is_(True),
        DriverLocation.status == "online",
        DriverLocation.updated_at >= freshness_cutoff(now),
    ).order_by(DriverLocation.updated_at.desc(), User.id).all()

    counts = active_order_counts(db, [user.id for user, _ in rows])
    candidates = [
        DriverCandidate(driver_id=user.id, name=user.name, active_orders=0)
        for user, _ in rows
        if counts.get(user.id, 0) == 0
    ]
    return candidates[:limit]


def batch_driver_pool(db: Session) -> List[DriverCandidate]:
    """
    Driver pool for batch planning: any driver whose location is active.
    Unlike the auto-assign pool there is no online or freshness filter.
    """
    rows = db.query(User).join(
        DriverLocation, DriverLocation.driver_id == User.id
    ).filter(
        User.role == UserRole.DRIVER,
        DriverLocation.is_active.is_(True),
    ).order_by(User.created_at, User.id).all()

    counts = active_order_counts(db, [user.id for user in rows])
    return [
        DriverCandidate(driver_id=user.id, name=user.name, active_orders=counts.get(user.id, 0))
        for user in rows
    ]


def commit_assignment(
    db: Session,
    bus: EventBus,
    order: Order,
    driver_id: str,
    now: Optional[datetime] = None,
) -> Order:
    order.driver_id = driver_id
    order.status = OrderStatus.ASSIGNED
    order.assigned_at = now or datetime.utcnow()
    db.commit()
    db.refresh(order)
    logger.info("Order %s assigned to driver %s", order.id, driver_id)

    emit_order_assigned(bus, order, driver_id)
    return order


def assign_driver(
    db: Session,
    bus: EventBus,
    order_id: str,
    actor: User,
    driver_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Assign an order to the given driver, or to the first available one"""
    order = get_order_or_404(db, order_id)
    ensure_store_owner(db, order, actor)

    if order.status not in ASSIGNABLE_STATUSES:
        raise ValidationError("Order is not ready for driver assignment")

    if driver_id:
        driver = db.query(User).filter(User.id == driver_id, User.role == UserRole.DRIVER).first()
        if not driver:
            raise NotFoundError("Driver")
        if driver.location is None or not driver.location.is_active:
            raise ValidationError("Driver is not active")
        selected_id = driver.id
    else:
        candidates = auto_assign_candidates(db, now=now)
        if not candidates:
            raise ValidationError("No available drivers")
        # TODO: rank candidates by distance to the store once stores carry coordinates everywhere
        selected_id = candidates[0].driver_id

    order = commit_assignment(db, bus, order, selected_id, now=now)

    create_notification(
        db, bus,
        recipient_id=selected_id,
        recipient_role=UserRole.DRIVER.value,
        type="DELIVERY_UPDATE",
        title="New Delivery Assignment",
        message="You have been assigned a new delivery",
        related_order_id=order.id,
        data={"order_id": order.id, "status": order.status.value},
    )
    if order.customer_id:
        create_notification(
            db, bus,
            recipient_id=order.customer_id,
            recipient_role=UserRole.CUSTOMER.value,
            type="DELIVERY_UPDATE",
            title="Driver Assigned",
            message="A driver has been assigned to your order",
            related_order_id=order.id,
            data={"order_id": order.id, "driver_id": selected_id},
        )
    return order


def accept_delivery(db: Session, bus: EventBus, order_id: str, driver: User) -> Order:
    """A driver claims a READY order for themselves"""
    order = get_order_or_404(db, order_id)

    if order.status != OrderStatus.READY:
        raise ValidationError("Order is not ready for pickup")
    if order.driver_id:
        raise ValidationError("Order already assigned to a driver")

    order = commit_assignment(db, bus, order, driver.id)

    if order.customer_id:
        create_notification(
            db, bus,
            recipient_id=order.customer_id,
            recipient_role=UserRole.CUSTOMER.value,
            type="DELIVERY_UPDATE",
            title="Driver Assigned",
            message="Your order has been assigned to a driver and is on the way!",
            related_order_id=order.id,
            data={"order_id": order.id, "driver_id": driver.id},
        )
    return order


def plan_batch_routes(
    items: Sequence[Tuple[str, Optional[str]]],
    orders: Mapping[str, PlannedOrder],
    drivers: Sequence[DriverCandidate],
) -> List[Dict[str, Any]]:
    """
    Build one route per driver from (order_id, driver_id or None) pairs.

    Bound orders go to their driver. Unbound orders, in input order, go to
    drivers sorted ascending by workload: the i-th unbound order lands on
    sorted_drivers[i % len(sorted_drivers)].

    A bound driver outside the pool rejects the whole batch with
    ValidationError rather than silently dropping that driver's orders,
    so a plan always covers every requested order.
    """
    by_id = {driver.driver_id: driver for driver in drivers}
    sorted_drivers = sorted(drivers, key=lambda driver: driver.active_orders)

    driver_orders: Dict[str, List[str]] = {}
    for order_id, driver_id in items:
        if driver_id:
            if driver_id not in by_id:
                raise ValidationError(f"Driver {driver_id} is not an active driver")
            driver_orders.setdefault(driver_id, []).append(order_id)

    unbound = [order_id for order_id, driver_id in items if not driver_id]
    for index, order_id in enumerate(unbound):
        driver = sorted_drivers[index % len(sorted_drivers)]
        driver_orders.setdefault(driver.driver_id, []).append(order_id)

    routes = []
    for driver_id, order_ids in driver_orders.items():
        driver = by_id[driver_id]
        sequence = sorted(order_ids, key=lambda order_id: orders[order_id].created_at)
        count = len(order_ids)
        routes.append({
            "driverId": driver_id,
            "driverName": driver.name,
            "orderIds": order_ids,
            "optimizedSequence": sequence,
            "totalDistance": count * KM_PER_DELIVERY,
            "estimatedTime": count * MINUTES_PER_DELIVERY,
            "ordersCount": count,
            "currentWorkloadBeforeAssignment": driver.active_orders,
        })
    return routes


def optimize_batch(db: Session, items: Sequence[Tuple[str, Optional[str]]], strategy: str) -> Dict[str, Any]:
    """Validate a batch and return the proposed routes without committing them"""
    order_ids = [order_id for order_id, _ in items]
    rows = db.query(Order).filter(
        Order.id.in_(order_ids),
        Order.status.in_(ASSIGNABLE_STATUSES),
    ).all()
    if len(rows) != len(set(order_ids)):
        raise ValidationError("Some orders are invalid or not ready for delivery")

    drivers = batch_driver_pool(db)
    if not drivers:
        raise ValidationError("No active drivers available")

    orders = {order.id: PlannedOrder(order_id=order.id, created_at=order.created_at) for order in rows}
    routes = plan_batch_routes(items, orders, drivers)

    return {
        "routes": routes,
        "totalOrders": len(rows),
        "totalDrivers": len(routes),
        "optimizationStrategy": strategy,
        "message": "Batch route optimization completed (orders sequenced by creation time)",
    }
