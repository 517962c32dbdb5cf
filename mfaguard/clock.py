"""
Clock sources.

Every timestamp in MFAGuard is a float of Unix seconds taken from an
injectable clock, so expiry and cooldown logic can be tested without sleeping.
"""

import threading
import time

from typing import Protocol


class Clock(Protocol):
    """Anything with a ``now()`` returning Unix seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Wall clock backed by ``time.time``."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(1000.0)
        >>> clock.advance(61)
        >>> clock.now()
        1061.0
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``."""
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += seconds

    def set(self, timestamp: float) -> None:
        with self._lock:
            self._now = float(timestamp)
