"""
Live event channels streamed to clients as Server-Sent Events.

A channel belongs to exactly one connection. It registers filtered listeners
on the EventBus, turns matching events into ``data: <json>`` frames, keeps
the connection alive with heartbeat comments and closes itself after a hard
lifetime. Whatever ends the connection (client disconnect, timeout, a failed
write) goes through ``EventChannel.close`` which runs once and unregisters
every listener the channel registered.
"""
import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dispatch.events import EventBus, EventType

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"

HEARTBEAT_FRAME = ": heartbeat\n\n"

# Queue sentinel that ends the stream
_CLOSED = object()

DEFAULT_MAX_QUEUED_FRAMES = 1000

CHANNEL_ROLES = ("admin", "vendor", "driver", "customer")


@dataclass
class ChannelContext:
    """Identity and state of one connection, shared with the filter predicates"""
    role: str
    user_id: str
    order_id: Optional[str] = None
    assigned_driver_id: Optional[str] = None
    closed: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


Predicate = Callable[[ChannelContext, Dict[str, Any]], bool]


@dataclass(frozen=True)
class Subscription:
    event: EventType
    frame_type: str
    predicate: Predicate
    on_match: Optional[Callable[[ChannelContext, Dict[str, Any]], None]] = field(default=None, compare=False)


# Filter predicates

def _order(payload: Dict[str, Any]) -> Dict[str, Any]:
    return payload.get("order") or {}


def vendor_owns_order(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    return context.is_admin or _order(payload).get("vendorId") == context.user_id


def order_is_ready(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    status = _order(payload).get("status")
    return isinstance(status, str) and status.upper() == "READY"


def driver_is_assignee(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    return context.is_admin or payload.get("driverId") == context.user_id


def customer_owns_order(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    return context.is_admin or _order(payload).get("customerId") == context.user_id


def is_notification_recipient(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    notification = payload.get("notification") or {}
    return context.is_admin or notification.get("recipientId") == context.user_id


def tracks_driver_location(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    driver_id = payload.get("driverId")
    if driver_id is not None and driver_id == context.assigned_driver_id:
        return True
    order_id = payload.get("orderId") or (payload.get("location") or {}).get("orderId")
    return order_id is not None and order_id == context.order_id


def is_tracked_order(context: ChannelContext, payload: Dict[str, Any]) -> bool:
    return _order(payload).get("id") == context.order_id


def follow_reassignment(context: ChannelContext, payload: Dict[str, Any]) -> None:
    context.assigned_driver_id = payload.get("driverId")


ROLE_SUBSCRIPTIONS: Dict[str, Tuple[Subscription, ...]] = {
    "vendor": (
        Subscription(EventType.ORDER_CREATED, "order_created", vendor_owns_order),
        Subscription(EventType.ORDER_UPDATED, "order_updated", vendor_owns_order),
    ),
    "driver": (
        Subscription(EventType.ORDER_UPDATED, "order_ready", order_is_ready),
        Subscription(EventType.ORDER_ASSIGNED, "order_assigned", driver_is_assignee),
    ),
    "customer": (
        Subscription(EventType.ORDER_UPDATED, "order_updated", customer_owns_order),
        Subscription(EventType.NOTIFICATION_SENT, "notification_sent", is_notification_recipient),
    ),
}

LOCATION_SUBSCRIPTIONS: Tuple[Subscription, ...] = (
    Subscription(EventType.DRIVER_LOCATION_UPDATED, "location", tracks_driver_location),
    Subscription(EventType.ORDER_ASSIGNED, "order_assigned", is_tracked_order, on_match=follow_reassignment),
)


def subscriptions_for_role(role: str) -> List[Subscription]:
    """Listeners a notification channel registers for the given viewer role"""
    if role != "admin":
        return list(ROLE_SUBSCRIPTIONS.get(role, ()))

    # Admin sees everything every other role sees, each frame once
    seen = set()
    subscriptions = []
    for role_subscriptions in ROLE_SUBSCRIPTIONS.values():
        for subscription in role_subscriptions:
            key = (subscription.event, subscription.frame_type)
            if key not in seen:
                seen.add(key)
                subscriptions.append(subscription)
    return subscriptions


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, enum.Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def format_frame(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=_json_default)}\n\n"


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class ChannelListener:
    """Callable registered on the bus on behalf of one channel"""

    def __init__(self, channel: "EventChannel", subscription: Subscription):
        self.channel = channel
        self.subscription = subscription

    def __call__(self, payload: Dict[str, Any]) -> None:
        channel = self.channel
        if channel.closed:
            return
        if not self.subscription.predicate(channel.context, payload):
            return
        if self.subscription.on_match is not None:
            self.subscription.on_match(channel.context, payload)
        channel.send({"type": self.subscription.frame_type, **payload})


class EventChannel:
    def __init__(
        self,
        bus: EventBus,
        context: ChannelContext,
        subscriptions: Iterable[Subscription],
        *,
        heartbeat_interval: float,
        max_lifetime: float,
        initial_frames: Optional[Iterable[Dict[str, Any]]] = None,
        name: str = "notifications",
        max_queued_frames: int = DEFAULT_MAX_QUEUED_FRAMES,
    ):
        self.bus = bus
        self.context = context
        self.subscriptions = list(subscriptions)
        self.heartbeat_interval = heartbeat_interval
        self.max_lifetime = max_lifetime
        self.name = name
        self.max_queued_frames = max_queued_frames
        self.close_reason: Optional[str] = None
        self._initial_frames = list(initial_frames or ())
        self._registered: List[Tuple[EventType, ChannelListener]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None
        self._opened = False

    @property
    def closed(self) -> bool:
        return self.context.closed

    def open(self) -> None:
        """Start the channel. Must run on the event loop that drains ``stream()``."""
        if self._opened or self.closed:
            return
        self._opened = True
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        self.send({"type": "connected", "timestamp": datetime.utcnow().isoformat()})
        for frame in self._initial_frames:
            self.send(frame)
        if self.closed:
            return

        for subscription in self.subscriptions:
            listener = ChannelListener(self, subscription)
            self.bus.on(subscription.event, listener)
            self._registered.append((subscription.event, listener))

        self._heartbeat_task = self._loop.create_task(self._heartbeat())
        self._timeout_task = self._loop.create_task(self._expire())
        logger.info(
            "SSE %s channel opened for %s %s (%d listeners)",
            self.name, self.context.role, self.context.user_id, len(self._registered),
        )

    def send(self, data: Dict[str, Any]) -> bool:
        """Queue one JSON frame. Failures close the channel instead of raising."""
        if self.closed:
            return False
        try:
            frame = format_frame(data)
        except (TypeError, ValueError):
            logger.exception("Could not serialize SSE frame for %s %s", self.context.role, self.context.user_id)
            self.close("write_error")
            return False
        return self._write(frame)

    def close(self, reason: str = "closed") -> None:
        if self.context.closed:
            return
        self.context.closed = True
        self.close_reason = reason

        self._cancel(self._heartbeat_task)
        self._heartbeat_task = None
        self._cancel(self._timeout_task)
        self._timeout_task = None

        registered, self._registered = self._registered, []
        for event, listener in registered:
            self.bus.off(event, listener)

        if self._queue is not None:
            self._call_in_loop(self._queue.put_nowait, _CLOSED)
        logger.info("SSE %s channel closed for %s %s (%s)", self.name, self.context.role, self.context.user_id, reason)

    async def stream(self):
        """Async iterator of SSE frames, handed to StreamingResponse"""
        self.open()
        if self._queue is None:
            return
        try:
            while True:
                frame = await self._queue.get()
                if frame is _CLOSED:
                    break
                yield frame
        finally:
            self.close(self.close_reason or "disconnect")

    def _write(self, frame: str) -> bool:
        if self.closed or self._queue is None:
            return False
        if not self._call_in_loop(self._enqueue, frame):
            self.close("write_error")
            return False
        return not self.closed

    def _enqueue(self, frame: str) -> None:
        if self.max_queued_frames and self._queue.qsize() >= self.max_queued_frames:
            logger.warning(
                "SSE %s client for %s %s stopped reading (%d frames queued)",
                self.name, self.context.role, self.context.user_id, self._queue.qsize(),
            )
            # Reader is stalled, its backlog will never be read
            while not self._queue.empty():
                self._queue.get_nowait()
            self.close("write_error")
            return
        self._queue.put_nowait(frame)

    def _call_in_loop(self, callback, *args) -> bool:
        """Run callback on the channel's loop, from whichever thread emitted"""
        try:
            if _running_loop() is self._loop:
                callback(*args)
            else:
                self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed
            return False
        return True

    def _cancel(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        self._call_in_loop(task.cancel)

    async def _heartbeat(self):
        while not self.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self.closed:
                break
            self._write(HEARTBEAT_FRAME)

    async def _expire(self):
        await asyncio.sleep(self.max_lifetime)
        self._timeout_task = None
        self.close("timeout")


def build_notification_channel(
    bus: EventBus,
    role: str,
    user_id: str,
    *,
    heartbeat_interval: float,
    max_lifetime: float,
    viewer_role: Optional[str] = None,
    max_queued_frames: int = DEFAULT_MAX_QUEUED_FRAMES,
) -> EventChannel:
    """
    Channel carrying the events of ``role``. ``viewer_role`` is the role of
    the connected account when it differs, as for an admin watching the
    vendor stream. Filters judge ownership by the viewer.
    """
    context = ChannelContext(role=viewer_role or role, user_id=user_id)
    return EventChannel(
        bus,
        context,
        subscriptions_for_role(role),
        heartbeat_interval=heartbeat_interval,
        max_lifetime=max_lifetime,
        name="notifications",
        max_queued_frames=max_queued_frames,
    )


def build_location_channel(
    bus: EventBus,
    order_id: str,
    viewer_role: str,
    viewer_id: str,
    assigned_driver_id: Optional[str],
    *,
    heartbeat_interval: float,
    max_lifetime: float,
    initial_location: Optional[Dict[str, Any]] = None,
    max_queued_frames: int = DEFAULT_MAX_QUEUED_FRAMES,
) -> EventChannel:
    """
    Channel tracking the driver of one order. When the driver's current
    location is already known it is pushed right after ``connected`` so the
    client does not wait for the next ping.
    """
    context = ChannelContext(
        role=viewer_role,
        user_id=viewer_id,
        order_id=order_id,
        assigned_driver_id=assigned_driver_id,
    )
    initial_frames = []
    if initial_location is not None:
        initial_frames.append({
            "type": "location",
            "driverId": assigned_driver_id,
            "orderId": order_id,
            "location": initial_location,
            "timestamp": datetime.utcnow().isoformat(),
        })
    return EventChannel(
        bus,
        context,
        LOCATION_SUBSCRIPTIONS,
        heartbeat_interval=heartbeat_interval,
        max_lifetime=max_lifetime,
        initial_frames=initial_frames,
        name="driver-location",
        max_queued_frames=max_queued_frames,
    )
