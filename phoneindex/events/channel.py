import queue
import threading
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")

_END = object()


class EventChannel(Generic[T]):
    """Thread-safe push channel from one producer to one consumer.

    The consumer iterates; ``close()`` tells the producer to stop, and
    ``publish()`` reports whether anyone is still listening. The queue is
    unbounded, so publishing never blocks on a consumer that stopped reading.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[object] = queue.Queue()
        self._completed = threading.Event()
        self.cancelled = threading.Event()

    @property
    def closed(self) -> bool:
        return self.cancelled.is_set()

    def publish(self, event: T) -> bool:
        """Queue an event; False once the consumer closed or the producer completed."""
        if self.cancelled.is_set() or self._completed.is_set():
            return False
        self._queue.put(event)
        return True

    def complete(self) -> None:
        """Mark the end of the stream. Idempotent."""
        if self._completed.is_set():
            return
        self._completed.set()
        self._queue.put(_END)

    def close(self) -> None:
        """Consumer disconnect."""
        self.cancelled.set()

    def __iter__(self) -> Iterator[T]:
        while not self.cancelled.is_set():
            item = self._queue.get()
            if item is _END:
                return
            yield item  # type: ignore[misc]

    def __enter__(self) -> "EventChannel[T]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
