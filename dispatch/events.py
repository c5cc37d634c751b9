"""
In-process event bus.

Publishers (order, assignment and location endpoints) emit events here and
every open live channel that registered a matching listener forwards them to
its client. Delivery is synchronous, in registration order and best effort:
nothing is persisted or replayed, so a listener registered after an emit
never sees it. Clients re-fetch state when they (re)connect.
"""
import enum
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EventListener = Callable[[Dict[str, Any]], None]


class EventType(str, enum.Enum):
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_DELIVERED = "order_delivered"
    DRIVER_LOCATION_UPDATED = "driver_location_updated"
    NOTIFICATION_SENT = "notification_sent"


class EventBus:
    """Publish/subscribe registry keyed by event name"""

    def __init__(self):
        self._listeners: Dict[str, List[EventListener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, listener: EventListener) -> None:
        with self._lock:
            self._listeners.setdefault(_event_name(event), []).append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        with self._lock:
            listeners = self._listeners.get(_event_name(event))
            if not listeners:
                return
            try:
                listeners.remove(listener)
            except ValueError:
                return
            if not listeners:
                del self._listeners[_event_name(event)]

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        name = _event_name(event)
        with self._lock:
            # Snapshot so a listener may unregister itself mid-emit
            listeners = list(self._listeners.get(name, ()))

        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Error in event listener for %s", name)

        logger.debug("Event emitted: %s to %d listener(s)", name, len(listeners))

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        with self._lock:
            if event is None:
                self._listeners.clear()
            else:
                self._listeners.pop(_event_name(event), None)

    def listener_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is None:
                return sum(len(listeners) for listeners in self._listeners.values())
            return len(self._listeners.get(_event_name(event), ()))


def _event_name(event) -> str:
    return event.value if isinstance(event, EventType) else str(event)


def _now() -> str:
    return datetime.utcnow().isoformat()


def serialize_order(order) -> Dict[str, Any]:
    """Shape an Order for event payloads and API responses"""
    return {
        "id": order.id,
        "status": order.status.value if order.status else None,
        "customerId": order.customer_id,
        "vendorId": order.vendor_id,
        "storeId": order.store_id,
        "driverId": order.driver_id,
        "deliveryAddress": order.delivery_address or {},
        "deliveryLatitude": order.delivery_latitude,
        "deliveryLongitude": order.delivery_longitude,
        "total": float(order.total) if order.total is not None else 0.0,
        "notes": order.notes,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "updatedAt": order.updated_at.isoformat() if order.updated_at else None,
        "assignedAt": order.assigned_at.isoformat() if order.assigned_at else None,
        "deliveredAt": order.delivered_at.isoformat() if order.delivered_at else None,
        "cancelledAt": order.cancelled_at.isoformat() if order.cancelled_at else None,
    }


def serialize_notification(notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "recipientId": notification.recipient_id,
        "recipientRole": notification.recipient_role,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message or "",
        "relatedOrderId": notification.related_order_id,
        "read": notification.is_read,
        "data": notification.data if notification.data is not None else {},
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


def emit_order_created(bus: EventBus, order) -> None:
    bus.emit(EventType.ORDER_CREATED, {"order": serialize_order(order), "timestamp": _now()})


def emit_order_updated(bus: EventBus, order) -> None:
    bus.emit(EventType.ORDER_UPDATED, {"order": serialize_order(order), "timestamp": _now()})


def emit_order_assigned(bus: EventBus, order, driver_id: str) -> None:
    bus.emit(EventType.ORDER_ASSIGNED, {
        "order": serialize_order(order),
        "driverId": driver_id,
        "timestamp": _now(),
    })


def emit_order_delivered(bus: EventBus, order) -> None:
    bus.emit(EventType.ORDER_DELIVERED, {"order": serialize_order(order), "timestamp": _now()})


def emit_driver_location_updated(bus: EventBus, driver_id: str, location: Dict[str, Any]) -> None:
    bus.emit(EventType.DRIVER_LOCATION_UPDATED, {
        "driverId": driver_id,
        "orderId": location.get("orderId"),
        "location": location,
        "timestamp": _now(),
    })


def emit_notification_sent(bus: EventBus, notification) -> None:
    bus.emit(EventType.NOTIFICATION_SENT, {
        "notification": serialize_notification(notification),
        "timestamp": _now(),
    })
