import threading
import time

import pytest

from sorter_stack.l0_core.bounded_queue import BoundedQueue, QueueStats


def test_bounded_queue_timed_put_get():
    q = BoundedQueue(maxsize=2, name="tq")

    # Fill within capacity
    assert q.put(1, timeout=0.01) is True
    assert q.put(2, timeout=0.01) is True

    # Exceed capacity → dropped by policy (False)
    assert q.put(3, timeout=0.01) is False
    assert q.put(3, timeout=0.0) is False
    assert q.dropped() == 2

    # Drain two items in FIFO order
    ok, val = q.get(timeout=0.01)
    assert ok is True and val == 1

    ok, val = q.get(timeout=0.01)
    assert ok is True and val == 2

    # Third get times out → (False, None)
    ok, val = q.get(timeout=0.01)
    assert ok is False and val is None


def test_bounded_queue_rejects_bad_arguments():
    with pytest.raises(ValueError):
        BoundedQueue(maxsize=0, name="tq")
    with pytest.raises(ValueError):
        BoundedQueue(maxsize=1, name="  ")
    with pytest.raises(ValueError):
        BoundedQueue(maxsize=1, name="tq", on_overflow="drop_oldest")  # type: ignore[arg-type]


def test_bounded_queue_stats():
    q = BoundedQueue(maxsize=1, name="InventoryWriteQueue")
    q.put("a", timeout=0.0)
    q.put("b", timeout=0.0)
    assert q.stats() == QueueStats("InventoryWriteQueue", size=1, capacity=1, dropped=1)


def test_put_until_waits_for_room():
    q = BoundedQueue(maxsize=1, name="tq")
    q.put("first", timeout=0.0)

    def drain():
        time.sleep(0.05)
        q.get(timeout=1.0)

    consumer = threading.Thread(target=drain)
    consumer.start()
    assert q.put_until("second", cancelled=lambda: False, poll_s=0.01) is True
    consumer.join()

    assert q.get(timeout=0.01) == (True, "second")
    assert q.dropped() == 0


def test_put_until_gives_up_once_cancelled():
    q = BoundedQueue(maxsize=1, name="tq")
    q.put("first", timeout=0.0)
    stop = threading.Event()
    threading.Timer(0.05, stop.set).start()

    assert q.put_until("second", cancelled=stop.is_set, poll_s=0.01) is False
    assert q.dropped() == 1
    assert q.qsize() == 1
