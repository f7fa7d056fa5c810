import queue
import threading
import time

import pytest

from memstreamer.queue import BoundedQueue


def test_fifo_order():
    q = BoundedQueue(4)
    for item in ("a", "b", "c"):
        q.put(item)
    assert [q.get(), q.get(), q.get()] == ["a", "b", "c"]


def test_free_tracks_size():
    q = BoundedQueue(3)
    assert q.free() == 3
    q.put(1)
    q.put(2)
    assert q.free() == 1
    assert len(q) == 2
    q.get()
    assert q.free() == 2


def test_put_on_full_queue_raises():
    q = BoundedQueue(2)
    q.put(1)
    q.put(2)
    with pytest.raises(queue.Full):
        q.put(3)
    with pytest.raises(queue.Full):
        q.put(3, timeout=0.02)
    assert q.drain() == [1, 2]


def test_get_on_empty_queue_raises():
    q = BoundedQueue(2)
    with pytest.raises(queue.Empty):
        q.get()
    started = time.monotonic()
    with pytest.raises(queue.Empty):
        q.get(timeout=0.05)
    assert time.monotonic() - started >= 0.04


def test_wraparound_keeps_order():
    q = BoundedQueue(2)
    received = []
    for item in range(7):
        q.put(item)
        received.append(q.get())
    assert received == list(range(7))


def test_none_is_a_valid_item():
    q = BoundedQueue(1)
    q.put(None)
    assert q.get() is None
    assert q.free() == 1


def test_blocking_get_wakes_on_put():
    q = BoundedQueue(1)

    def delayed_put():
        time.sleep(0.05)
        q.put("frame")

    worker = threading.Thread(target=delayed_put)
    worker.start()
    item = q.get(timeout=2)
    worker.join(2)
    assert item == "frame"


def test_blocking_put_wakes_on_get():
    q = BoundedQueue(1)
    q.put("first")
    worker = threading.Thread(target=lambda: q.put("second", timeout=2))
    worker.start()
    time.sleep(0.05)
    assert q.get() == "first"
    worker.join(2)
    assert q.get(timeout=1) == "second"


def test_drain_empties_queue():
    q = BoundedQueue(5)
    for item in range(4):
        q.put(item)
    assert q.drain() == [0, 1, 2, 3]
    assert q.free() == 5
    assert q.drain() == []


@pytest.mark.parametrize("capacity", [0, -1])
def test_invalid_capacity(capacity):
    with pytest.raises(ValueError):
        BoundedQueue(capacity)