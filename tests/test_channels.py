import asyncio
import json
import pytest
from dispatch.events import EventBus, EventType
from dispatch.services.channels import (
    HEARTBEAT_FRAME,
    build_location_channel,
    build_notification_channel,
    format_frame,
    subscriptions_for_role,
)


class CountingBus(EventBus):
    def __init__(self):
        super().__init__()
        self.on_calls = 0
        self.off_calls = 0

    def on(self, event, listener):
        self.on_calls += 1
        super().on(event, listener)

    def off(self, event, listener):
        self.off_calls += 1
        super().off(event, listener)


def notification_channel(bus, role, user_id, heartbeat=30, lifetime=30):
    return build_notification_channel(bus, role, user_id, heartbeat_interval=heartbeat, max_lifetime=lifetime)


async def drain(channel):
    return [frame async for frame in channel.stream()]


def parse(frames):
    return [json.loads(frame[len("data: "):]) for frame in frames if frame.startswith("data: ")]


def run_emits(channel, bus, emits):
    """Open the channel, feed it events, close it and return the decoded frames"""
    async def scenario():
        channel.open()
        for event, payload in emits:
            bus.emit(event, payload)
        channel.close("done")
        return await drain(channel)

    return parse(asyncio.run(scenario()))


def order_event(**order):
    return {"order": order, "timestamp": "2026-01-01T00:00:00"}


# Listener hygiene

@pytest.mark.parametrize("role", ["admin", "vendor", "driver", "customer"])
def test_close_unregisters_every_listener(role):
    bus = CountingBus()
    channel = notification_channel(bus, role, "u1")

    async def scenario():
        channel.open()
        assert bus.listener_count() == len(subscriptions_for_role(role))
        channel.close("done")
        channel.close("again")

    asyncio.run(scenario())

    assert bus.on_calls == bus.off_calls > 0
    assert bus.listener_count() == 0
    assert channel.close_reason == "done"


def test_timeout_closes_channel_and_unregisters():
    bus = CountingBus()
    channel = notification_channel(bus, "customer", "c1", lifetime=0.05)

    frames = parse(asyncio.run(drain(channel)))

    assert [frame["type"] for frame in frames] == ["connected"]
    assert channel.close_reason == "timeout"
    assert bus.on_calls == bus.off_calls == 2
    assert bus.listener_count() == 0


def test_client_disconnect_closes_channel_and_unregisters():
    bus = CountingBus()
    channel = notification_channel(bus, "vendor", "v1")

    async def scenario():
        stream = channel.stream()
        first = await stream.__anext__()
        assert bus.listener_count() == 2
        await stream.aclose()
        return first

    first = asyncio.run(scenario())

    assert json.loads(first[len("data: "):])["type"] == "connected"
    assert channel.closed
    assert channel.close_reason == "disconnect"
    assert bus.on_calls == bus.off_calls == 2


def test_write_error_closes_channel_and_unregisters():
    bus = CountingBus()
    channel = notification_channel(bus, "vendor", "v1")

    frames = run_emits(channel, bus, [
        (EventType.ORDER_CREATED, order_event(id="o1", vendorId="v1", total=object())),
        (EventType.ORDER_CREATED, order_event(id="o2", vendorId="v1")),
    ])

    assert [frame["type"] for frame in frames] == ["connected"]
    assert channel.close_reason == "write_error"
    assert bus.on_calls == bus.off_calls
    assert bus.listener_count() == 0


def test_send_after_close_is_dropped():
    bus = EventBus()
    channel = notification_channel(bus, "customer", "c1")

    async def scenario():
        channel.open()
        channel.close("done")
        assert channel.send({"type": "late"}) is False
        return await drain(channel)

    frames = parse(asyncio.run(scenario()))
    assert [frame["type"] for frame in frames] == ["connected"]


def test_heartbeat_comment_frames():
    bus = EventBus()
    channel = notification_channel(bus, "customer", "c1", heartbeat=0.01, lifetime=0.1)

    frames = asyncio.run(drain(channel))

    assert frames[0].startswith("data: ")
    assert HEARTBEAT_FRAME in frames
    assert all(frame == HEARTBEAT_FRAME for frame in frames[1:])


def test_frame_format():
    assert format_frame({"type": "connected"}) == 'data: {"type": "connected"}\n\n'


# Role filters

ROLE_CASES = [
    # vendor v1
    ("vendor", EventType.ORDER_CREATED, order_event(id="o1", vendorId="v1"), ["order_created"]),
    ("vendor", EventType.ORDER_CREATED, order_event(id="o1", vendorId="v2"), []),
    ("vendor", EventType.ORDER_UPDATED, order_event(id="o1", vendorId="v1", status="ACCEPTED"), ["order_updated"]),
    ("vendor", EventType.ORDER_UPDATED, order_event(id="o1", vendorId="v2", status="ACCEPTED"), []),
    ("vendor", EventType.ORDER_ASSIGNED, {"order": {"id": "o1", "vendorId": "v1"}, "driverId": "d1"}, []),
    # driver d1
    ("driver", EventType.ORDER_UPDATED, order_event(id="o1", status="READY"), ["order_ready"]),
    ("driver", EventType.ORDER_UPDATED, order_event(id="o1", status="ready"), ["order_ready"]),
    ("driver", EventType.ORDER_UPDATED, order_event(id="o1", status="PREPARING"), []),
    ("driver", EventType.ORDER_ASSIGNED, {"order": {"id": "o1"}, "driverId": "d1"}, ["order_assigned"]),
    ("driver", EventType.ORDER_ASSIGNED, {"order": {"id": "o1"}, "driverId": "d2"}, []),
    ("driver", EventType.ORDER_CREATED, order_event(id="o1", vendorId="v1"), []),
    # customer c1
    ("customer", EventType.ORDER_UPDATED, order_event(id="o1", customerId="c1"), ["order_updated"]),
    ("customer", EventType.NOTIFICATION_SENT, {"notification": {"id": "n1", "recipientId": "c1"}}, ["notification_sent"]),
    ("customer", EventType.NOTIFICATION_SENT, {"notification": {"id": "n1", "recipientId": "c2"}}, []),
    ("customer", EventType.ORDER_ASSIGNED, {"order": {"id": "o1", "customerId": "c1"}, "driverId": "d1"}, []),
    # admin sees every role's frames regardless of ownership
    ("admin", EventType.ORDER_CREATED, order_event(id="o1", vendorId="v9"), ["order_created"]),
    ("admin", EventType.ORDER_UPDATED, order_event(id="o1", status="PREPARING"), ["order_updated"]),
    ("admin", EventType.ORDER_UPDATED, order_event(id="o1", status="READY"), ["order_updated", "order_ready"]),
    ("admin", EventType.ORDER_ASSIGNED, {"order": {"id": "o1"}, "driverId": "d9"}, ["order_assigned"]),
    ("admin", EventType.NOTIFICATION_SENT, {"notification": {"recipientId": "c9"}}, ["notification_sent"]),
    ("admin", EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d1", "location": {}}, []),
]

USER_IDS = {"vendor": "v1", "driver": "d1", "customer": "c1", "admin": "a1"}


@pytest.mark.parametrize("role,event,payload,expected", ROLE_CASES)
def test_role_filters(role, event, payload, expected):
    bus = EventBus()
    channel = notification_channel(bus, role, USER_IDS[role])

    frames = run_emits(channel, bus, [(event, payload)])

    assert frames[0]["type"] == "connected"
    assert [frame["type"] for frame in frames[1:]] == expected


def test_admin_registers_each_frame_once():
    keys = [(s.event, s.frame_type) for s in subscriptions_for_role("admin")]
    assert len(keys) == len(set(keys)) == 5


def test_customer_gets_nothing_for_someone_elses_order():
    bus = EventBus()
    channel = notification_channel(bus, "customer", "c1")

    frames = run_emits(channel, bus, [
        (EventType.ORDER_UPDATED, order_event(id="o1", customerId="c2", status="PREPARING")),
    ])

    assert [frame["type"] for frame in frames] == ["connected"]


def test_frames_keep_emit_order():
    bus = EventBus()
    channel = notification_channel(bus, "vendor", "v1")

    frames = run_emits(channel, bus, [
        (EventType.ORDER_CREATED, order_event(id="o1", vendorId="v1")),
        (EventType.ORDER_UPDATED, order_event(id="o1", vendorId="v1", status="ACCEPTED")),
        (EventType.ORDER_CREATED, order_event(id="o2", vendorId="v1")),
    ])

    assert [(frame["type"], frame["order"]["id"]) for frame in frames[1:]] == [
        ("order_created", "o1"), ("order_updated", "o1"), ("order_created", "o2"),
    ]


# Driver location channel

def location_channel(bus, driver_id="d1", initial_location=None):
    return build_location_channel(
        bus, "o1", "customer", "c1", driver_id,
        heartbeat_interval=30, max_lifetime=30, initial_location=initial_location,
    )


def test_initial_location_is_sent_once_before_live_updates():
    bus = EventBus()
    channel = location_channel(bus, initial_location={"lat": 1.0, "lng": 2.0, "orderId": "o1"})

    frames = run_emits(channel, bus, [
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d1", "orderId": "o1", "location": {"lat": 1.5}}),
    ])

    assert [frame["type"] for frame in frames] == ["connected", "location", "location"]
    assert frames[1]["location"] == {"lat": 1.0, "lng": 2.0, "orderId": "o1"}
    assert frames[1]["driverId"] == "d1"
    assert frames[2]["location"] == {"lat": 1.5}


def test_no_initial_location_without_driver_position():
    bus = EventBus()
    channel = location_channel(bus, driver_id=None)

    frames = run_emits(channel, bus, [])

    assert [frame["type"] for frame in frames] == ["connected"]


def test_location_filter_matches_driver_or_order():
    bus = EventBus()
    channel = location_channel(bus)

    frames = run_emits(channel, bus, [
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d2", "orderId": None, "location": {"n": 1}}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d1", "orderId": None, "location": {"n": 2}}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d3", "orderId": "o1", "location": {"n": 3}}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d4", "location": {"n": 4, "orderId": "o1"}}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d5", "orderId": "o2", "location": {"n": 5}}),
    ])

    assert [frame["location"]["n"] for frame in frames[1:]] == [2, 3, 4]


def test_location_channel_follows_reassignment():
    bus = EventBus()
    channel = location_channel(bus)

    frames = run_emits(channel, bus, [
        (EventType.ORDER_ASSIGNED, {"order": {"id": "o2"}, "driverId": "d7"}),
        (EventType.ORDER_ASSIGNED, {"order": {"id": "o1"}, "driverId": "d2"}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d1", "location": {"n": 1}}),
        (EventType.DRIVER_LOCATION_UPDATED, {"driverId": "d2", "location": {"n": 2}}),
    ])

    assert [frame["type"] for frame in frames] == ["connected", "order_assigned", "location"]
    assert frames[2]["location"] == {"n": 2}
    assert channel.context.assigned_driver_id == "d2"


@pytest.mark.parametrize("role,event,payload,expected", [
    ("vendor", EventType.ORDER_CREATED, order_event(id="o1", vendorId="v9"), ["order_created"]),
    ("driver", EventType.ORDER_ASSIGNED, {"order": {"id": "o1"}, "driverId": "d9"}, ["order_assigned"]),
    ("customer", EventType.ORDER_UPDATED, order_event(id="o1", customerId="c9"), ["order_updated"]),
    ("vendor", EventType.NOTIFICATION_SENT, {"notification": {"recipientId": "c9"}}, []),
])
def test_admin_watching_another_role_sees_all_of_its_frames(role, event, payload, expected):
    bus = EventBus()
    channel = build_notification_channel(
        bus, role, "a1", viewer_role="admin", heartbeat_interval=30, max_lifetime=30
    )

    frames = run_emits(channel, bus, [(event, payload)])

    assert channel.context.is_admin
    assert channel.subscriptions == subscriptions_for_role(role)
    assert [frame["type"] for frame in frames[1:]] == expected


# Backpressure

def test_stalled_reader_closes_channel():
    bus = CountingBus()
    channel = build_notification_channel(
        bus, "vendor", "v1", heartbeat_interval=30, max_lifetime=30, max_queued_frames=3
    )

    async def scenario():
        channel.open()
        # connected plus two orders fill the queue, the third overflows it
        for i in range(3):
            bus.emit(EventType.ORDER_CREATED, order_event(id=f"o{i}", vendorId="v1"))
        assert channel.closed
        assert channel.send({"type": "late"}) is False
        return await drain(channel)

    assert asyncio.run(scenario()) == []
    assert channel.close_reason == "write_error"
    assert bus.on_calls == bus.off_calls
    assert bus.listener_count() == 0


def test_frames_within_queue_limit_are_kept():
    bus = EventBus()
    channel = build_notification_channel(
        bus, "vendor", "v1", heartbeat_interval=30, max_lifetime=30, max_queued_frames=3
    )

    frames = run_emits(channel, bus, [
        (EventType.ORDER_CREATED, order_event(id="o1", vendorId="v1")),
        (EventType.ORDER_CREATED, order_event(id="o2", vendorId="v1")),
    ])

    assert [frame["type"] for frame in frames] == ["connected", "order_created", "order_created"]
    assert channel.close_reason == "done"
