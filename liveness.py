# Author: Omi Shrestha

"""
Notification liveness tracking.

The notification callback and the periodic check both touch the same
timestamp and counter, so every read-modify-write happens under one lock.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class TickResult:
    """Outcome of a single liveness check."""
    freshness: Freshness
    elapsed: float
    stale_count: int

    @property
    def stale(self):
        return self.freshness is Freshness.STALE


class LivenessTracker:
    """Classifies the notification stream as fresh or stale against a window."""

    def __init__(self, window=3.0, clock=time.monotonic):
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._last_notification = clock()
        self._stale_count = 0
        self._received = 0

    def reset(self):
        """Start tracking a new session: silence is measured from now."""
        with self._lock:
            self._last_notification = self._clock()
            self._stale_count = 0

    def on_notification_received(self):
        with self._lock:
            self._last_notification = self._clock()
            self._received += 1

    def check_tick(self):
        with self._lock:
            now = self._clock()
            elapsed = now - self._last_notification
            if elapsed <= self.window:
                self._stale_count = 0
                freshness = Freshness.FRESH
            else:
                self._stale_count += 1
                freshness = Freshness.STALE
            return TickResult(freshness, elapsed, self._stale_count)

    @property
    def stale_count(self):
        with self._lock:
            return self._stale_count

    @property
    def received(self):
        with self._lock:
            return self._received

    def seconds_since_notification(self):
        with self._lock:
            now = self._clock()
            return now - self._last_notification
