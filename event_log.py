# Author: Omi Shrestha

"""
Append-only diagnostic event log.
One line per event: "<unix seconds> - <kind>".
"""

import logging
import threading
import time
from collections import deque
from enum import Enum

from errors import ConfigurationError


class EventKind(str, Enum):
    PASS = "pass"
    OVERDUE = "overdue"
    RECEIVED = "received"
    RECONNECT = "reconnect"


class EventLogSink:
    """Writes liveness events to a file and keeps the latest ones in memory."""

    def __init__(self, path=None, keep=200):
        self.path = path
        self._recent = deque(maxlen=keep)
        self._lock = threading.Lock()
        self._handler = None

        # Private logger so events never reach the root handlers
        self._logger = logging.Logger("event_log")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        if path:
            try:
                self._handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"cannot open event log {path}: {e}") from e
            self._handler.setFormatter(logging.Formatter("%(created)d - %(message)s"))
            self._logger.addHandler(self._handler)

    def emit(self, kind, **details):
        kind = EventKind(kind)
        entry = {"timestamp": time.time(), "kind": kind.value}
        entry.update(details)
        with self._lock:
            self._recent.append(entry)
        self._logger.info(kind.value)
        return entry

    def recent(self, limit=None):
        with self._lock:
            events = list(self._recent)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def close(self):
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
