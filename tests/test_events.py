import logging
from dispatch.events import (
    EventBus, EventType, emit_order_assigned, emit_driver_location_updated, serialize_order
)
from dispatch.models import OrderStatus, UserRole


def test_emit_calls_listeners_in_registration_order():
    bus = EventBus()
    calls = []
    bus.on(EventType.ORDER_CREATED, lambda payload: calls.append(("first", payload["n"])))
    bus.on(EventType.ORDER_CREATED, lambda payload: calls.append(("second", payload["n"])))

    bus.emit(EventType.ORDER_CREATED, {"n": 1})

    assert calls == [("first", 1), ("second", 1)]


def test_enum_and_string_names_address_the_same_listeners():
    bus = EventBus()
    calls = []
    bus.on("order_updated", calls.append)
    bus.emit(EventType.ORDER_UPDATED, {"id": "o1"})
    assert calls == [{"id": "o1"}]
    assert bus.listener_count(EventType.ORDER_UPDATED) == 1


def test_failing_listener_does_not_stop_the_others(caplog):
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.on(EventType.ORDER_UPDATED, broken)
    bus.on(EventType.ORDER_UPDATED, received.append)

    with caplog.at_level(logging.ERROR, logger="dispatch.events"):
        bus.emit(EventType.ORDER_UPDATED, {"id": "o1"})

    assert received == [{"id": "o1"}]
    assert "Error in event listener for order_updated" in caplog.text


def test_off_removes_only_that_listener_and_ignores_unknown():
    bus = EventBus()
    first, second = [], []
    bus.on(EventType.ORDER_CREATED, first.append)
    bus.on(EventType.ORDER_CREATED, second.append)

    bus.off(EventType.ORDER_CREATED, first.append)
    bus.off(EventType.ORDER_CREATED, lambda payload: None)
    bus.off(EventType.NOTIFICATION_SENT, first.append)
    bus.emit(EventType.ORDER_CREATED, {"id": "o1"})

    assert first == []
    assert second == [{"id": "o1"}]


def test_listener_may_unregister_itself_during_emit():
    bus = EventBus()
    calls = []

    def once(payload):
        calls.append(payload)
        bus.off(EventType.ORDER_CREATED, once)

    bus.on(EventType.ORDER_CREATED, once)
    bus.emit(EventType.ORDER_CREATED, {"n": 1})
    bus.emit(EventType.ORDER_CREATED, {"n": 2})

    assert calls == [{"n": 1}]
    assert bus.listener_count() == 0


def test_remove_all_listeners():
    bus = EventBus()
    bus.on(EventType.ORDER_CREATED, print)
    bus.on(EventType.ORDER_UPDATED, print)

    bus.remove_all_listeners(EventType.ORDER_CREATED)
    assert bus.listener_count() == 1

    bus.remove_all_listeners()
    assert bus.listener_count() == 0


def test_emit_without_listeners_is_a_no_op():
    EventBus().emit(EventType.ORDER_DELIVERED, {"id": "o1"})


def test_order_assigned_payload(shop, make_order, make_user, bus):
    vendor, customer, store = shop
    driver = make_user(UserRole.DRIVER)
    order = make_order(store, customer, status=OrderStatus.ASSIGNED, driver=driver)
    received = []
    bus.on(EventType.ORDER_ASSIGNED, received.append)

    emit_order_assigned(bus, order, driver.id)

    payload = received[0]
    assert payload["driverId"] == driver.id
    assert payload["order"] == serialize_order(order)
    assert payload["order"]["status"] == "ASSIGNED"
    assert payload["order"]["vendorId"] == vendor.id
    assert "timestamp" in payload


def test_driver_location_payload_carries_order_id(bus):
    received = []
    bus.on(EventType.DRIVER_LOCATION_UPDATED, received.append)

    emit_driver_location_updated(bus, "d1", {"lat": 1.0, "lng": 2.0, "orderId": "o9"})

    assert received[0]["driverId"] == "d1"
    assert received[0]["orderId"] == "o9"
    assert received[0]["location"]["lat"] == 1.0
