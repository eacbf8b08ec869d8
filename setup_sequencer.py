# Author: Omi Shrestha

"""
Setup sequence: enable -> scan -> connect -> discover service ->
discover characteristic -> subscribe.

The first failing step ends the attempt. Whether to try again is the
supervisor's decision.
"""

import asyncio
import logging
from enum import Enum

from ble_device import ConnectionSession
from ble_utils import (
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
    matches_address,
)
from errors import ConfigurationError, DiscoveryError, MonitorError

logger = logging.getLogger(__name__)


class SetupState(str, Enum):
    IDLE = "idle"
    ADAPTER_ENABLING = "adapter_enabling"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING_SERVICE = "discovering_service"
    DISCOVERING_CHARACTERISTIC = "discovering_characteristic"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    FAILED = "failed"


class SetupSequencer:
    """Drives one peripheral from unknown to subscribed, or fails cleanly."""

    def __init__(self, transport, address, scan_timeout=None):
        if not address:
            raise ConfigurationError("refusing to scan without a target address")
        self.transport = transport
        self.address = address
        self.scan_timeout = scan_timeout
        self.state = SetupState.IDLE
        self.failure = None
        self._adapter_enabled = False

    def _enter(self, state):
        logger.debug("[SETUP] %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self, handler_factory, generation=1, disconnected_callback=None):
        """
        Run the whole sequence once.

        `handler_factory(session)` builds the notification callback for the
        new session. Returns `(session, handler)` on success; raises a
        MonitorError subclass otherwise, with `self.state` left at FAILED.
        """
        self.failure = None
        client = None
        try:
            if not self._adapter_enabled:
                self._enter(SetupState.ADAPTER_ENABLING)
                logger.info("[BLE] Enabling adapter")
                await self.transport.enable_adapter()
                self._adapter_enabled = True

            self._enter(SetupState.SCANNING)
            logger.info("[BLE] Scanning for %s...", self.address)
            device = await self.transport.scan(self.address, matches_address, self.scan_timeout)

            self._enter(SetupState.CONNECTING)
            client = await self.transport.connect(device, disconnected_callback)
            logger.info("[BLE] Connected to %s", self.address)

            self._enter(SetupState.DISCOVERING_SERVICE)
            services = await self.transport.discover_services(client, [HEART_RATE_SERVICE_UUID])
            if not services:
                raise DiscoveryError("could not find heart rate service")
            service = services[0]
            logger.info("[BLE] Found service %s", service.uuid)

            self._enter(SetupState.DISCOVERING_CHARACTERISTIC)
            chars = await self.transport.discover_characteristics(service, [HEART_RATE_MEASUREMENT_UUID])
            if not chars:
                raise DiscoveryError("could not find heart rate characteristic")
            characteristic = chars[0]
            logger.info("[BLE] Found characteristic %s", characteristic.uuid)

            self._enter(SetupState.SUBSCRIBING)
            session = ConnectionSession(self.address, client, service, characteristic, generation)
            handler = handler_factory(session)
            try:
                await self.transport.subscribe(client, characteristic, handler)
            except BaseException:
                session.close()
                raise
            logger.info("[BLE] Subscribed to notifications (session #%d)", generation)

            self._enter(SetupState.ACTIVE)
            return session, handler
        except MonitorError as e:
            self.failure = e
            self._enter(SetupState.FAILED)
            logger.error("[SETUP] %s", e)
            if client is not None:
                await self.transport.disconnect(client)
            raise
        except asyncio.CancelledError:
            self._enter(SetupState.IDLE)
            if client is not None:
                await self.transport.disconnect(client)
            raise
