# Author: Omi Shrestha

import asyncio
import logging

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from errors import (
    AdapterError,
    ConnectError,
    DiscoveryError,
    ScanError,
    ScanTimeoutError,
    SubscribeError,
)

logger = logging.getLogger(__name__)

# Heart Rate Service UUIDs (Bluetooth SIG assigned numbers)
HEART_RATE_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HEART_RATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"


def matches_address(candidate, target):
    """
    Decide whether a discovered peripheral is the one to connect to.

    Byte-exact comparison of the string forms: no case folding and no
    separator normalization, so "aa:bb:..." does not match "AA:BB:...".
    """
    return str(candidate) == str(target)


def describe_device(device, adv_data=None):
    """One-line summary of a scan result: address, RSSI, name, HR flag."""
    rssi = getattr(adv_data, "rssi", None)
    name = (getattr(adv_data, "local_name", None) or getattr(device, "name", None)) or "Unknown"
    uuids = [u.lower() for u in (getattr(adv_data, "service_uuids", None) or [])]
    heart_rate = HEART_RATE_SERVICE_UUID in uuids
    rssi_text = f"{rssi} dBm" if rssi is not None else "n/a"
    suffix = " [heart rate]" if heart_rate else ""
    return f"{device.address}  {rssi_text:>8}  {name}{suffix}"


class BleakTransport:
    """
    BLE collaborator backed by bleak.

    Translates bleak failures into the monitor's error taxonomy so the
    setup sequencer never sees a raw BleakError.
    """

    def __init__(self, adapter=None):
        self.adapter = adapter

    def _scanner_kwargs(self):
        return {"adapter": self.adapter} if self.adapter else {}

    async def enable_adapter(self):
        """Bring the radio up by starting and stopping an idle scanner."""
        try:
            scanner = BleakScanner(**self._scanner_kwargs())
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as e:
            raise AdapterError(f"failed to enable BLE stack: {e}") from e
        logger.info("[BLE] Adapter %s enabled", self.adapter or "default")

    async def scan(self, target, matcher=matches_address, timeout=None):
        """
        Scan until a peripheral whose address satisfies `matcher` shows up.

        Returns the bleak device of the first match. `timeout=None` scans
        forever; cancelling the awaiting task stops the scanner.
        """
        loop = asyncio.get_running_loop()
        found = loop.create_future()

        def detection_callback(device, adv_data):
            logger.debug("[SCAN] found device: %s %s %s",
                         device.address, adv_data.rssi, adv_data.local_name)
            if found.done():
                return
            if matcher(device.address, target):
                found.set_result(device)

        scanner = BleakScanner(detection_callback=detection_callback, **self._scanner_kwargs())
        try:
            await scanner.start()
        except BleakError as e:
            raise ScanError(f"failed to start scan: {e}") from e

        try:
            return await asyncio.wait_for(found, timeout)
        except asyncio.TimeoutError:
            raise ScanTimeoutError(f"{target} not found within {timeout}s") from None
        finally:
            try:
                await scanner.stop()
            except BleakError as e:
                logger.warning("[SCAN] Stop scan error: %s", e)

    async def connect(self, device, disconnected_callback=None):
        client = BleakClient(device, disconnected_callback=disconnected_callback)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise ConnectError(f"failed to connect to {getattr(device, 'address', device)}: {e}") from e
        return client

    async def discover_services(self, client, service_uuids):
        """Return the services on `client` matching `service_uuids` (possibly empty)."""
        try:
            collection = client.services
        except BleakError as e:
            raise DiscoveryError(f"failed to discover services: {e}") from e
        services = []
        for uuid in service_uuids:
            service = collection.get_service(uuid)
            if service is not None:
                services.append(service)
        return services

    async def discover_characteristics(self, service, char_uuids):
        characteristics = []
        for uuid in char_uuids:
            char = service.get_characteristic(uuid)
            if char is not None:
                characteristics.append(char)
        return characteristics

    async def subscribe(self, client, characteristic, on_notify):
        """Deliver each notification payload to `on_notify(bytes)`."""
        def notify_handler(sender, data: bytearray):
            on_notify(bytes(data))

        try:
            await client.start_notify(characteristic, notify_handler)
        except (BleakError, OSError) as e:
            raise SubscribeError(f"failed to enable notifications: {e}") from e

    async def disconnect(self, client):
        """
        Disconnect without raising: a link that is already dead is the
        normal case here, so errors are only logged.
        """
        if client is None:
            return
        try:
            if client.is_connected:
                await client.disconnect()
                logger.info("[BLE] Disconnected from %s", client.address)
        except EOFError:
            # D-Bus connection already closed
            pass
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            logger.warning("[BLE] Disconnect error: %s", e)


async def list_nearby(timeout=10.0, adapter=None):
    """Scan for `timeout` seconds and return (device, adv_data) pairs, strongest first."""
    kwargs = {"adapter": adapter} if adapter else {}
    found = await BleakScanner.discover(timeout=timeout, return_adv=True, **kwargs)
    return sorted(found.values(), key=lambda pair: pair[1].rssi, reverse=True)
