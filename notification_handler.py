# Author: Omi Shrestha

import logging
import time
from collections import deque

from event_log import EventKind

logger = logging.getLogger(__name__)


class NotificationHandler:
    """
    Receives Heart Rate Measurement notifications for one session.

    Only arrival matters for liveness; the payload is kept raw and
    never parsed.
    """

    def __init__(self, session, tracker, sink=None, history_size=100):
        self.session = session
        self.tracker = tracker
        self.sink = sink
        self.count = 0
        self.last_payload = None
        self.history = deque(maxlen=history_size)

    def __call__(self, data: bytes):
        # Callbacks can still trickle in after a reconnect tore the session down
        if not self.session.active:
            logger.debug("[NOTIFICATION] Ignoring payload from closed session %r", self.session)
            return

        self.tracker.on_notification_received()
        self.count += 1
        self.last_payload = bytes(data)
        self.history.append({
            "timestamp": time.time(),
            "hex": self.last_payload.hex(),
        })
        if self.sink is not None:
            self.sink.emit(EventKind.RECEIVED)
        logger.debug("[NOTIFICATION] %s -> %s", self.session.address, self.last_payload.hex())

    def get_history(self, limit=10):
        """Most recent notifications, oldest first."""
        if limit <= 0:
            return []
        history = list(self.history)
        return history[-limit:] if len(history) > limit else history
