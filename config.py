# Author: Omi Shrestha

import os
from dataclasses import dataclass, replace
from typing import Optional

from errors import ConfigurationError

DEFAULT_STALE_WINDOW = 3.0       # seconds of silence before a tick is stale
DEFAULT_RECONNECT_THRESHOLD = 2  # reconnect once stale ticks exceed this
DEFAULT_SCAN_TIMEOUT = 30.0
DEFAULT_CONNECT_ATTEMPTS = 5
DEFAULT_EVENT_LOG = "bluetooth.log"


def _env_float(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class MonitorConfig:
    """Settings for one monitoring run."""
    address: str
    stale_window: float = DEFAULT_STALE_WINDOW
    reconnect_threshold: int = DEFAULT_RECONNECT_THRESHOLD
    scan_timeout: Optional[float] = DEFAULT_SCAN_TIMEOUT  # None scans forever
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    backoff_initial: float = 1.0
    backoff_max: float = 30.0
    adapter: Optional[str] = None
    event_log: Optional[str] = DEFAULT_EVENT_LOG
    history_size: int = 100

    @classmethod
    def from_env(cls, address=None, **overrides):
        """
        Build a config from HRM_* environment variables.

        Explicit arguments take precedence over the environment.
        """
        config = cls(
            address=address if address is not None else os.getenv("HRM_ADDRESS", ""),
            stale_window=_env_float("HRM_STALE_WINDOW", DEFAULT_STALE_WINDOW),
            reconnect_threshold=_env_int("HRM_RECONNECT_THRESHOLD", DEFAULT_RECONNECT_THRESHOLD),
            scan_timeout=_env_float("HRM_SCAN_TIMEOUT", DEFAULT_SCAN_TIMEOUT),
            connect_attempts=_env_int("HRM_CONNECT_ATTEMPTS", DEFAULT_CONNECT_ATTEMPTS),
            adapter=os.getenv("HRM_ADAPTER") or None,
            event_log=os.getenv("HRM_EVENT_LOG", DEFAULT_EVENT_LOG) or None,
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        config = replace(config, **overrides)

        # A zero or negative scan timeout means "scan until found"
        if config.scan_timeout is not None and config.scan_timeout <= 0:
            config = replace(config, scan_timeout=None)
        return config

    def validate(self):
        if not self.address or not self.address.strip():
            raise ConfigurationError("no target address configured")
        if self.stale_window <= 0:
            raise ConfigurationError("stale window must be positive")
        if self.reconnect_threshold < 0:
            raise ConfigurationError("reconnect threshold cannot be negative")
        if self.connect_attempts < 1:
            raise ConfigurationError("at least one connect attempt is required")
        if self.scan_timeout is not None and self.scan_timeout <= 0:
            raise ConfigurationError("scan timeout must be positive")
        return self
