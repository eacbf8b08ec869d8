# Author: Omi Shrestha

"""
Error taxonomy for the heart rate monitor.
Each fatal class carries the process exit code it maps to.
"""


class MonitorError(Exception):
    """Base class for every failure raised by the monitor."""

    exit_code = 1


class ConfigurationError(MonitorError):
    """No target address, or settings that make no sense."""

    exit_code = 2


class AdapterError(MonitorError):
    """The Bluetooth adapter could not be brought up."""

    exit_code = 3


class DiscoveryError(MonitorError):
    """The peripheral does not expose the Heart Rate service or characteristic."""

    exit_code = 4


class ConnectError(MonitorError):
    exit_code = 5


class ScanError(MonitorError):
    exit_code = 6


class ScanTimeoutError(ScanError):
    """The target did not show up before the scan deadline."""


class SubscribeError(MonitorError):
    exit_code = 7


# Failures that go back into the bounded retry loop instead of ending the run
RETRYABLE = (ConnectError, ScanTimeoutError, SubscribeError)


def retryable(exc):
    return isinstance(exc, RETRYABLE)
