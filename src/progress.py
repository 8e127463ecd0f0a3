"""
Latest-value broadcast stream used to publish install progress.
"""

import threading
from typing import Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class StreamClosedError(RuntimeError):
    """Raised when setting a value on a closed stream."""


class ValueStream(Generic[T]):
    """
    Holds a current value that watchers can follow until the stream is closed.

    Watchers start from the current value and then see each later value.
    A watcher that falls behind skips to the latest value. Once closed, the
    value is final and every watcher finishes after observing it.
    """

    def __init__(self, value: T):
        self._value = value
        self._version = 0
        self._closed = False
        self._cond = threading.Condition()

    def get(self) -> T:
        with self._cond:
            return self._value

    def set(self, value: T) -> None:
        with self._cond:
            if self._closed:
                raise StreamClosedError("Cannot set a value on a closed stream")
            self._value = value
            self._version += 1
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def is_closed(self) -> bool:
        with self._cond:
            return self._closed

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the stream closes or ``timeout`` elapses. Returns is_closed()."""
        with self._cond:
            return self._cond.wait_for(lambda: self._closed, timeout=timeout)

    def watch(self) -> Iterator[T]:
        """Yield the current value, then each update, ending after the final value."""
        seen = -1
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._version != seen or self._closed)
                if self._version == seen:
                    return
                seen = self._version
                value = self._value
                closed = self._closed
            yield value
            if closed:
                return
