import asyncio
from types import SimpleNamespace

import pytest

from ble_utils import HEART_RATE_MEASUREMENT_UUID, HEART_RATE_SERVICE_UUID
from config import MonitorConfig
from errors import AdapterError, ConnectError, ScanTimeoutError
from event_log import EventLogSink

TARGET = "EE:74:7D:C9:2A:68"


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeService:
    def __init__(self, with_characteristic=True):
        self.uuid = HEART_RATE_SERVICE_UUID
        self.characteristic = SimpleNamespace(uuid=HEART_RATE_MEASUREMENT_UUID) if with_characteristic else None

    def get_characteristic(self, uuid):
        if self.characteristic is not None and uuid == self.characteristic.uuid:
            return self.characteristic
        return None


class FakeClient:
    def __init__(self, address):
        self.address = address
        self.is_connected = True


class FakeTransport:
    """In-memory stand-in for the bleak transport."""

    def __init__(self, has_service=True, has_characteristic=True, connect_failures=0,
                 scan_timeouts=0, adapter_error=False):
        self.has_service = has_service
        self.has_characteristic = has_characteristic
        self.connect_failures = connect_failures
        self.scan_timeouts = scan_timeouts
        self.adapter_error = adapter_error

        self.calls = []
        self.clients = []
        self.disconnected = []
        self.handlers = []
        self.on_subscribed = None

    async def enable_adapter(self):
        self.calls.append("enable")
        if self.adapter_error:
            raise AdapterError("no adapter")

    async def scan(self, target, matcher, timeout=None):
        self.calls.append("scan")
        if self.scan_timeouts:
            self.scan_timeouts -= 1
            raise ScanTimeoutError(f"{target} not found")
        candidates = ["AA:AA:AA:AA:AA:AA", target.lower(), target]
        for address in candidates:
            if matcher(address, target):
                return SimpleNamespace(address=address)
        raise AssertionError("matcher never matched")

    async def connect(self, device, disconnected_callback=None):
        self.calls.append("connect")
        if self.connect_failures:
            self.connect_failures -= 1
            raise ConnectError("connection refused")
        client = FakeClient(device.address)
        self.clients.append(client)
        return client

    async def discover_services(self, client, service_uuids):
        self.calls.append("discover_services")
        return [FakeService(self.has_characteristic)] if self.has_service else []

    async def discover_characteristics(self, service, char_uuids):
        self.calls.append("discover_characteristics")
        char = service.get_characteristic(char_uuids[0])
        return [char] if char is not None else []

    async def subscribe(self, client, characteristic, on_notify):
        self.calls.append("subscribe")
        self.handlers.append(on_notify)
        if self.on_subscribed is not None:
            self.on_subscribed(len(self.handlers))

    async def disconnect(self, client):
        self.calls.append("disconnect")
        client.is_connected = False
        self.disconnected.append(client)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    sink = EventLogSink(None)
    yield sink
    sink.close()


@pytest.fixture
def config():
    return MonitorConfig(
        address=TARGET,
        stale_window=0.01,
        reconnect_threshold=2,
        scan_timeout=1.0,
        connect_attempts=3,
        backoff_initial=0.0,
        backoff_max=0.0,
        event_log=None,
    )


async def run_with_timeout(coro, timeout=5.0):
    return await asyncio.wait_for(coro, timeout)
