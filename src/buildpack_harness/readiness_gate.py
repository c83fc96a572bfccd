"""
ReadinessGate: one-shot readiness signal driven by container log output.

Container boot emits unstructured log lines and the embedded nginx only
accepts traffic once it prints its start-up banner, so readiness is detected
by substring matching over the live output stream rather than a port probe.
"""

import logging
import threading

from .config import READINESS_SENTINEL

logger = logging.getLogger(__name__)


class ReadinessGate:
    """
    Single-use countdown latch released by a sentinel substring.

    The count starts at 1 and can never drop below zero, so repeated
    sentinel lines do not double-release. Waiters use a bounded wait and
    proceed anyway when it expires.
    """

    def __init__(self, sentinel: str = READINESS_SENTINEL, count: int = 1):
        if count < 0:
            raise ValueError("count must be non-negative")
        self.sentinel = sentinel
        self._count = count
        self._lock = threading.Lock()
        self._released = threading.Event()
        if count == 0:
            self._released.set()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def is_released(self) -> bool:
        return self._released.is_set()

    def count_down(self) -> bool:
        """
        Decrement the count, releasing waiters when it reaches zero.

        Returns:
            True if this call changed the count, False if already released
        """
        with self._lock:
            if self._count == 0:
                return False
            self._count -= 1
            if self._count == 0:
                self._released.set()
            return True

    def observe(self, chunk: str) -> bool:
        """
        Inspect one output chunk and count down if it contains the sentinel.

        Returns:
            True only for the chunk that actually triggered the count down
        """
        if self.sentinel in chunk and self.count_down():
            logger.debug(f"Readiness sentinel observed: {self.sentinel!r}")
            return True
        return False

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until released or until timeout elapses.

        Returns:
            True if released, False if the wait timed out
        """
        released = self._released.wait(timeout)
        if not released:
            logger.debug(f"Readiness gate not released after {timeout}s, proceeding")
        return released

    def __repr__(self) -> str:
        return f"ReadinessGate(sentinel={self.sentinel!r}, count={self.count})"
