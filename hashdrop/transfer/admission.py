"""
Admission Control

Caps the number of connections under active transfer. A connection must win
a slot before any protocol exchange happens; connections that arrive while
every slot is taken are answered with REJECTED and closed.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class AdmissionController:
    """
    Counts active connections against a fixed capacity.

    try_acquire() and release() are the only operations touching the counter
    and each holds the lock only for the test-and-update itself, so
    0 <= active <= capacity is never observably violated.

    The server only calls these from its event loop thread; the lock
    matters for callers on other threads.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._active = 0
        self._lock = threading.Lock()

        # Statistics
        self.admitted_total = 0
        self.rejected_total = 0

    @property
    def active(self) -> int:
        """Number of connections currently holding a slot."""
        return self._active

    @property
    def available(self) -> int:
        return self.capacity - self._active

    def try_acquire(self) -> bool:
        """
        Take a slot if one is free.

        Returns:
            True if admitted, False if already at capacity (count unchanged)
        """
        with self._lock:
            if self._active >= self.capacity:
                self.rejected_total += 1
                return False
            self._active += 1
            self.admitted_total += 1
            return True

    def release(self):
        """Give back a slot taken by try_acquire()."""
        with self._lock:
            if self._active == 0:
                raise RuntimeError("release() called with no active connections")
            self._active -= 1

    def get_stats(self) -> dict:
        """Get admission statistics."""
        return {
            'active': self._active,
            'capacity': self.capacity,
            'admitted_total': self.admitted_total,
            'rejected_total': self.rejected_total,
        }
