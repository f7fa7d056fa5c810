"""A fixed-capacity FIFO shared between threads."""

from __future__ import annotations

import queue as _stdqueue
import threading
from collections import deque
from typing import Any, Deque, List


class BoundedQueue:
    """A thread-safe FIFO with a fixed capacity and timed put and get.

    A timeout of 0 means no waiting: a full queue makes ``put`` raise
    ``queue.Full`` and an empty one makes ``get`` raise ``queue.Empty`` at once.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._items: Deque[Any] = deque()
        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)
        self._not_empty = threading.Condition(self._lock)

    def put(self, item: Any, timeout: float = 0) -> None:
        """Append ``item``, waiting up to ``timeout`` seconds for room."""
        with self._not_full:
            if not self._not_full.wait_for(
                lambda: len(self._items) < self.capacity, max(timeout, 0)
            ):
                raise _stdqueue.Full
            self._items.append(item)
            self._not_empty.notify_all()

    def get(self, timeout: float = 0) -> Any:
        """Remove and return the oldest item, waiting up to ``timeout`` seconds."""
        with self._not_empty:
            if not self._not_empty.wait_for(lambda: len(self._items) > 0, max(timeout, 0)):
                raise _stdqueue.Empty
            item = self._items.popleft()
            self._not_full.notify_all()
            return item

    def free(self) -> int:
        """Number of items that can still be put."""
        with self._lock:
            return self.capacity - len(self._items)

    def drain(self) -> List[Any]:
        """Remove and return every queued item, oldest first."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
            self._not_full.notify_all()
            return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)