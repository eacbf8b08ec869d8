# Author: Omi Shrestha

"""
Reconnect supervisor for a single heart rate peripheral.

One explicit loop owns the whole lifecycle:

    setup (with bounded retry) -> watch liveness -> disconnect -> setup ...

Only one watch loop exists at a time; it returns before the next
session is set up, so a stale session handle is never checked.
"""

import asyncio
import logging
import time

from ble_utils import BleakTransport
from errors import MonitorError, retryable
from event_log import EventKind, EventLogSink
from liveness import LivenessTracker
from notification_handler import NotificationHandler
from setup_sequencer import SetupSequencer

logger = logging.getLogger(__name__)


class HeartRateMonitor:
    """Keeps one heart rate peripheral subscribed, reconnecting when data goes stale."""

    def __init__(self, config, transport=None, sink=None, clock=time.monotonic):
        self.config = config.validate()
        self.transport = transport if transport is not None else BleakTransport(config.adapter)
        self.sink = sink if sink is not None else EventLogSink(config.event_log)
        self.tracker = LivenessTracker(config.stale_window, clock)
        self.sequencer = SetupSequencer(self.transport, config.address, config.scan_timeout)

        self.session = None
        self.handler = None
        self.generation = 0
        self.reconnects = 0
        self.running = False

        self._stopping = False
        self._reconnect_requested = False
        self._wake = None
        self._setup_task = None

    # ------------------------------------------------------------------
    # Liveness decisions
    # ------------------------------------------------------------------

    def evaluate_tick(self):
        """
        Run one liveness check and log it.

        Returns True when consecutive stale ticks exceed the reconnect
        threshold.
        """
        result = self.tracker.check_tick()
        if result.stale:
            self.sink.emit(EventKind.OVERDUE, elapsed=round(result.elapsed, 3),
                           stale_count=result.stale_count)
            logger.warning("[LIVENESS] overdue: %.1fs since last notification (%d/%d)",
                           result.elapsed, result.stale_count, self.config.reconnect_threshold)
        else:
            self.sink.emit(EventKind.PASS, elapsed=round(result.elapsed, 3))
            logger.debug("[LIVENESS] pass: %.1fs since last notification", result.elapsed)
        return result.stale_count > self.config.reconnect_threshold

    # ------------------------------------------------------------------
    # Control from outside the loop
    # ------------------------------------------------------------------

    def request_reconnect(self):
        """Force the current session to be torn down and set up again."""
        self._reconnect_requested = True
        if self._wake is not None:
            self._wake.set()

    def stop(self):
        self._stopping = True
        if self._wake is not None:
            self._wake.set()
        task = self._setup_task
        # stop() may be called from inside the setup task itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _make_handler(self, session):
        return NotificationHandler(session, self.tracker, self.sink, self.config.history_size)

    def _on_disconnected(self, client):
        """bleak link-loss callback: end the current session right away."""
        session = self.session
        if session is None or session.client is not client:
            logger.debug("[BLE] Ignoring disconnect from an earlier session")
            return
        logger.warning("[BLE] Link to %s dropped", self.config.address)
        session.close()
        self.request_reconnect()

    async def _sleep(self, delay):
        """Sleep for `delay` seconds unless stop() or request_reconnect() wakes us."""
        try:
            await asyncio.wait_for(self._wake.wait(), delay)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def establish(self):
        """
        Run setup until it succeeds, a fatal error occurs or the retry
        budget is spent. Returns the new session, or None when stopped.
        """
        delay = self.config.backoff_initial
        attempt = 0
        while not self._stopping:
            attempt += 1
            self._setup_task = asyncio.ensure_future(self.sequencer.run(
                self._make_handler,
                generation=self.generation + 1,
                disconnected_callback=self._on_disconnected,
            ))
            try:
                session, handler = await self._setup_task
            except asyncio.CancelledError:
                if self._stopping:
                    return None
                raise
            except MonitorError as e:
                if not retryable(e) or attempt >= self.config.connect_attempts:
                    raise
                logger.warning("[BLE] Setup attempt %d/%d failed (%s), retrying in %.1fs",
                               attempt, self.config.connect_attempts, e, delay)
                await self._sleep(delay)
                delay = min(delay * 2, self.config.backoff_max)
                continue
            finally:
                self._setup_task = None

            self.generation += 1
            self.session = session
            self.handler = handler
            self.tracker.reset()
            self._reconnect_requested = False
            self._wake.clear()
            return session
        return None

    async def watch(self):
        """
        Check liveness every window until a reconnect is due.

        Returns True when the session should be replaced, False when the
        monitor is stopping.
        """
        while not self._stopping:
            await self._sleep(self.config.stale_window)
            if self._stopping:
                return False
            if self._reconnect_requested:
                self._reconnect_requested = False
                logger.info("[BLE] Reconnect requested")
                return True
            if self.evaluate_tick():
                return True
        return False

    async def teardown(self):
        session = self.session
        if session is None:
            return
        self.session = None
        session.close()
        await self.transport.disconnect(session.client)

    async def run(self):
        """Monitor until stop() is called or a fatal error is raised."""
        self._stopping = False
        self._reconnect_requested = False
        self._wake = asyncio.Event()
        self.running = True
        try:
            while not self._stopping:
                if await self.establish() is None:
                    break
                if not await self.watch():
                    break
                logger.warning("[BLE] Reconnecting to %s", self.config.address)
                await self.teardown()
                self.reconnects += 1
                self.sink.emit(EventKind.RECONNECT, generation=self.generation)
        finally:
            self.running = False
            await self.teardown()

    def status(self):
        """Snapshot of the monitor for the status API."""
        session = self.session
        return {
            "address": self.config.address,
            "running": self.running,
            "state": self.sequencer.state.value,
            "connected": bool(session and session.active),
            "generation": self.generation,
            "reconnects": self.reconnects,
            "stale_count": self.tracker.stale_count,
            "reconnect_threshold": self.config.reconnect_threshold,
            "stale_window": self.config.stale_window,
            "seconds_since_notification": round(self.tracker.seconds_since_notification(), 3),
            "notifications_received": self.tracker.received,
        }
