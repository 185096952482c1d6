import threading
import time

import pytest

from sorter_stack.l0_core import CommandBus, EventBus, StartSequenceCmd


@pytest.fixture
def bus():
    b = EventBus(capacity=64, publish_timeout_ms=10)
    yield b
    b.close()


def test_events_are_delivered_in_order_on_one_thread(bus):
    seen = []
    threads = set()

    def on_event(evt):
        seen.append(evt)
        threads.add(threading.current_thread().name)

    bus.subscribe("t", on_event)
    for i in range(20):
        assert bus.publish("t", i)
    assert bus.flush(timeout=1.0)

    assert seen == list(range(20))
    assert threads == {"EventBus-Dispatcher"}


def test_subscriber_error_does_not_stop_dispatch(bus):
    seen = []

    def broken(evt):
        raise RuntimeError("boom")

    bus.subscribe("t", broken)
    bus.subscribe("t", seen.append)
    bus.publish("t", "a")
    bus.publish("t", "b")
    assert bus.flush()
    assert seen == ["a", "b"]


def test_unsubscribe_stops_delivery(bus):
    seen = []
    bus.subscribe("t", seen.append)
    bus.publish("t", 1)
    bus.flush()
    bus.unsubscribe("t", seen.append)
    bus.publish("t", 2)
    bus.flush()
    assert seen == [1]


def test_flush_from_dispatcher_thread_is_refused(bus):
    errors = []

    def reentrant(_):
        try:
            bus.flush()
        except RuntimeError as e:
            errors.append(e)

    bus.subscribe("t", reentrant)
    bus.publish("t", None)
    assert bus.flush()
    assert len(errors) == 1


def test_full_queue_drops_newest():
    gate = threading.Event()
    b = EventBus(capacity=2, publish_timeout_ms=1)
    try:
        b.subscribe("t", lambda _: gate.wait(2.0))
        b.publish("t", 0)          # taken by the dispatcher, which then blocks
        accepted = [b.publish("t", i) for i in range(1, 6)]
        assert accepted.count(True) <= 2
        assert accepted[-1] is False
        assert b.stats().dropped == accepted.count(False)
    finally:
        gate.set()
        b.close()


def test_publish_wait_delivers_everything_to_a_slow_subscriber():
    seen = []
    b = EventBus(capacity=2, publish_timeout_ms=1)
    try:
        def slow(evt):
            time.sleep(0.005)
            seen.append(evt)

        b.subscribe("t", slow)
        for i in range(30):
            assert b.publish_wait("t", i) is True
        assert b.flush(timeout=2.0)
        assert seen == list(range(30))
        assert b.stats().dropped == 0
    finally:
        b.close()


def test_publish_wait_gives_up_when_cancelled():
    seen = []
    entered = threading.Event()
    gate = threading.Event()
    b = EventBus(capacity=2, publish_timeout_ms=1)
    try:
        def blocking(evt):
            entered.set()
            gate.wait(2.0)
            seen.append(evt)

        b.subscribe("t", blocking)
        b.publish("t", 0)
        assert entered.wait(1.0)
        assert b.publish("t", 1)
        assert b.publish("t", 2)

        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        assert b.publish_wait("t", 3, cancel=cancel) is False
        assert b.stats().dropped == 1

        gate.set()
        assert b.flush(timeout=2.0)
        assert seen == [0, 1, 2]
    finally:
        gate.set()
        b.close()


def test_publish_wait_from_dispatcher_thread_is_refused(bus):
    errors = []

    def reentrant(_):
        try:
            bus.publish_wait("other", None)
        except RuntimeError as e:
            errors.append(e)

    bus.subscribe("t", reentrant)
    bus.publish("t", None)
    assert bus.flush()
    assert len(errors) == 1


def test_command_bus_routes_by_type():
    cb = CommandBus()
    cb.register(StartSequenceCmd, lambda cmd: f"start:{cmd.reason}")
    assert cb.call(StartSequenceCmd(reason="test")) == "start:test"

    with pytest.raises(ValueError):
        cb.register(StartSequenceCmd, lambda cmd: None)
    with pytest.raises(LookupError):
        cb.call(object())
