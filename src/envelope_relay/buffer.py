"""
Bounded, insertion-ordered history with FIFO eviction.
"""

import threading
import time
from collections import deque
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_CAPACITY = 100


class HistoryBuffer(Generic[T]):
    """Holds at most `capacity` items; a put at capacity evicts the oldest first.

    `read()` is most-recent-first, `get_all()` oldest-first. Both return a
    snapshot taken under the buffer lock, so a reader never sees half a put.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: deque[tuple[float, T]] = deque()
        self._lock = threading.Lock()
        self._last_access = time.monotonic()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_access(self) -> float:
        """`time.monotonic()` of the last put/read/clear."""
        return self._last_access

    def __len__(self) -> int:
        return len(self._items)

    def size(self) -> int:
        return len(self._items)

    def put(self, item: T) -> None:
        with self._lock:
            if len(self._items) >= self._capacity:
                self._items.popleft()
            self._items.append((time.time(), item))
            self._last_access = time.monotonic()

    def read(self, max_age: Optional[float] = None) -> list[T]:
        """Most-recent-first snapshot, optionally only items newer than `max_age` seconds."""
        with self._lock:
            self._last_access = time.monotonic()
            entries = list(self._items)
        result: list[T] = []
        min_time = time.time() - max_age if max_age is not None else None
        for inserted_at, item in reversed(entries):
            if min_time is not None and inserted_at < min_time:
                break
            result.append(item)
        return result

    def get_all(self) -> list[T]:
        with self._lock:
            self._last_access = time.monotonic()
            return [item for _, item in self._items]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._last_access = time.monotonic()
