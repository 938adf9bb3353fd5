"""Bounded work queue filled once and drained once."""

from collections import deque
from typing import Generic, Iterator, TypeVar

T = TypeVar('T')


class QueueClosedError(Exception):
    """put() after the queue was closed."""


class QueueFullError(Exception):
    """put() beyond the queue capacity."""


class WorkQueue(Generic[T]):
    """Pre-sized FIFO buffer.

    The producer fills it with put() and calls close(); the consumer then
    drains it exactly once. Draining before close() or twice is an error.
    """

    def __init__(self, capacity: int):
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self._items: deque = deque()
        self._closed = False
        self._drained = False

    def put(self, item: T) -> None:
        if self._closed:
            raise QueueClosedError("work queue is closed")
        if len(self._items) >= self.capacity:
            raise QueueFullError(f"work queue is full (capacity {self.capacity})")
        self._items.append(item)

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def peek(self) -> list[T]:
        """Snapshot of queued items without consuming them."""
        return list(self._items)

    def drain(self) -> Iterator[T]:
        """Yield items in enqueue order, removing each as it is consumed.

        Raises:
            RuntimeError: If the queue is still open or was already drained
        """
        if not self._closed:
            raise RuntimeError("work queue must be closed before draining")
        if self._drained:
            raise RuntimeError("work queue was already drained")
        self._drained = True
        while self._items:
            yield self._items.popleft()
