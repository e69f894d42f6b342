"""
NetSentry rate limiting.
Interval limiter that spaces out scan dispatches against the target network.
"""

import threading
import time
from typing import Callable, Optional


class IntervalLimiter:
    """Grants at most one slot per `interval_seconds`.

    Slots are reserved under a lock so concurrent batches sharing a limiter
    interleave instead of bursting. Waiting is done on an Event, so a caller's
    cancel event interrupts the wait immediately.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def reserve(self) -> float:
        """Reserve the next slot and return how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval_seconds
            return slot - now

    def acquire(self, cancel: Optional[threading.Event] = None) -> bool:
        """Block until the next slot. Returns False if `cancel` was set first."""
        delay = self.reserve()
        waiter = cancel if cancel is not None else threading.Event()
        if delay > 0 and waiter.wait(delay):
            return False
        return not (cancel is not None and cancel.is_set())
