# Author: Omi Shrestha

import time


class ConnectionSession:
    """Represents one connected and subscribed heart rate peripheral."""

    def __init__(self, address, client, service=None, characteristic=None, generation=1):
        self.address = address                  # BLE address of the peripheral
        self.client = client                    # GATT client, owned by this session
        self.service = service                  # Heart Rate service handle
        self.characteristic = characteristic    # Heart Rate Measurement characteristic
        self.generation = generation            # 1 for the first session, +1 per reconnect
        self.connected_at = time.monotonic()
        self.active = True

    def close(self):
        """Mark the session dead so late notifications are ignored."""
        self.active = False

    def __repr__(self):
        state = "active" if self.active else "closed"
        return f"<ConnectionSession {self.address} #{self.generation} {state}>"
