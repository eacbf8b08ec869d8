import asyncio
from dataclasses import replace

import pytest

from ble_device import ConnectionSession
from errors import ConnectError, DiscoveryError
from event_log import EventKind
from supervisor import HeartRateMonitor

from conftest import FakeClient, FakeTransport, run_with_timeout


def kinds(sink):
    return [event["kind"] for event in sink.recent()]


def test_reconnect_fires_on_third_consecutive_stale_tick(config, transport, sink, clock):
    monitor = HeartRateMonitor(replace(config, stale_window=3.0), transport, sink, clock)
    monitor.tracker.reset()

    # checks land just after each 3 second boundary of silence
    decisions = []
    for _ in range(4):
        clock.advance(3.0 + 0.001)
        decisions.append(monitor.evaluate_tick())

    assert decisions == [False, False, True, True]
    assert kinds(sink) == ["overdue", "overdue", "overdue", "overdue"]


def test_single_missed_window_does_not_reconnect(config, transport, sink, clock):
    monitor = HeartRateMonitor(replace(config, stale_window=3.0), transport, sink, clock)
    monitor.tracker.reset()

    clock.advance(3.5)
    assert not monitor.evaluate_tick()
    monitor.tracker.on_notification_received()
    clock.advance(3.0)
    assert not monitor.evaluate_tick()
    clock.advance(3.5)
    assert not monitor.evaluate_tick()

    assert kinds(sink) == ["overdue", "pass", "overdue"]
    assert monitor.tracker.stale_count == 1


def test_zero_threshold_reconnects_on_first_stale_tick(config, transport, sink, clock):
    monitor = HeartRateMonitor(replace(config, stale_window=3.0, reconnect_threshold=0),
                               transport, sink, clock)
    monitor.tracker.reset()
    clock.advance(3.1)
    assert monitor.evaluate_tick()


@pytest.mark.asyncio
async def test_silent_stream_triggers_reconnect(config, transport, sink):
    monitor = HeartRateMonitor(config, transport, sink)

    def on_subscribed(count):
        if count == 2:
            monitor.stop()

    transport.on_subscribed = on_subscribed

    await run_with_timeout(monitor.run())

    assert transport.calls.count("connect") == 2
    assert monitor.reconnects == 1
    assert monitor.generation == 2
    assert transport.disconnected == transport.clients
    assert kinds(sink).count("overdue") == 3
    assert kinds(sink).index("reconnect") > kinds(sink).index("overdue")
    assert not monitor.running
    assert monitor.session is None


@pytest.mark.asyncio
async def test_new_session_starts_with_fresh_liveness(config, transport, sink):
    monitor = HeartRateMonitor(config, transport, sink)

    def on_subscribed(count):
        if count == 2:
            monitor.stop()

    transport.on_subscribed = on_subscribed
    await run_with_timeout(monitor.run())

    # three stale ticks were counted on the first session
    assert monitor.reconnects == 1
    assert monitor.tracker.stale_count == 0
    monitor.tracker.on_notification_received()
    result = monitor.tracker.check_tick()
    assert not result.stale
    assert result.stale_count == 0


@pytest.mark.asyncio
async def test_steady_notifications_keep_session(config, transport, sink):
    monitor = HeartRateMonitor(replace(config, stale_window=0.05), transport, sink)
    runner = asyncio.ensure_future(monitor.run())

    while not transport.handlers:
        await asyncio.sleep(0.001)
    handler = transport.handlers[0]
    for _ in range(60):
        handler(b"\x00\x50")
        await asyncio.sleep(0.005)

    monitor.stop()
    await run_with_timeout(runner)

    assert monitor.reconnects == 0
    assert transport.calls.count("connect") == 1
    assert "overdue" not in kinds(sink)
    assert "pass" in kinds(sink)
    assert monitor.handler.count == 60
    assert monitor.tracker.received == 60


@pytest.mark.asyncio
async def test_late_notification_from_old_session_is_ignored(config, transport, sink):
    monitor = HeartRateMonitor(config, transport, sink)

    def on_subscribed(count):
        if count == 2:
            monitor.stop()

    transport.on_subscribed = on_subscribed
    await run_with_timeout(monitor.run())

    old_handler = transport.handlers[0]
    received = monitor.tracker.received
    old_handler(b"\x00\x40")

    assert monitor.tracker.received == received
    assert old_handler.count == 0


@pytest.mark.asyncio
async def test_connect_failures_are_retried(config, sink):
    transport = FakeTransport(connect_failures=2)
    monitor = HeartRateMonitor(config, transport, sink)
    transport.on_subscribed = lambda count: monitor.stop()

    await run_with_timeout(monitor.run())

    assert transport.calls.count("connect") == 3
    assert transport.calls.count("enable") == 1
    assert monitor.generation == 1


@pytest.mark.asyncio
async def test_connect_failures_exhaust_attempts(config, sink):
    transport = FakeTransport(connect_failures=5)
    monitor = HeartRateMonitor(config, transport, sink)

    with pytest.raises(ConnectError):
        await run_with_timeout(monitor.run())

    assert transport.calls.count("connect") == config.connect_attempts
    assert not monitor.running


@pytest.mark.asyncio
async def test_scan_timeout_is_retried(config, sink):
    transport = FakeTransport(scan_timeouts=1)
    monitor = HeartRateMonitor(config, transport, sink)
    transport.on_subscribed = lambda count: monitor.stop()

    await run_with_timeout(monitor.run())

    assert transport.calls.count("scan") == 2


@pytest.mark.asyncio
async def test_discovery_error_is_not_retried(config, sink):
    transport = FakeTransport(has_service=False)
    monitor = HeartRateMonitor(config, transport, sink)

    with pytest.raises(DiscoveryError):
        await run_with_timeout(monitor.run())

    assert transport.calls.count("connect") == 1
    assert transport.handlers == []


@pytest.mark.asyncio
async def test_requested_reconnect_replaces_session(config, transport, sink):
    monitor = HeartRateMonitor(replace(config, stale_window=10.0), transport, sink)

    def on_subscribed(count):
        if count == 1:
            asyncio.get_running_loop().call_later(0.01, monitor.request_reconnect)
        else:
            monitor.stop()

    transport.on_subscribed = on_subscribed
    await run_with_timeout(monitor.run())

    assert monitor.reconnects == 1
    assert "overdue" not in kinds(sink)
    assert kinds(sink)[-1] == EventKind.RECONNECT.value


def test_status_snapshot(config, transport, sink, clock):
    monitor = HeartRateMonitor(config, transport, sink, clock)
    clock.advance(1.25)

    status = monitor.status()

    assert status["address"] == config.address
    assert status["state"] == "idle"
    assert status["connected"] is False
    assert status["running"] is False
    assert status["generation"] == 0
    assert status["seconds_since_notification"] == 1.25


def test_dropped_link_closes_current_session(config, transport, sink):
    monitor = HeartRateMonitor(config, transport, sink)
    monitor.session = ConnectionSession(config.address, FakeClient(config.address))

    monitor._on_disconnected(monitor.session.client)

    assert not monitor.session.active
    assert monitor.status()["connected"] is False
    assert monitor._reconnect_requested


def test_disconnect_from_earlier_client_is_ignored(config, transport, sink):
    monitor = HeartRateMonitor(config, transport, sink)
    monitor.session = ConnectionSession(config.address, FakeClient(config.address), generation=2)

    monitor._on_disconnected(FakeClient(config.address))

    assert monitor.session.active
    assert monitor.status()["connected"] is True
    assert not monitor._reconnect_requested


@pytest.mark.asyncio
async def test_dropped_link_triggers_reconnect(config, transport, sink):
    monitor = HeartRateMonitor(replace(config, stale_window=10.0), transport, sink)
    snapshots = []

    def drop_link():
        monitor._on_disconnected(transport.clients[0])
        snapshots.append(monitor.status()["connected"])

    def on_subscribed(count):
        if count == 1:
            asyncio.get_running_loop().call_later(0.01, drop_link)
        else:
            monitor.stop()

    transport.on_subscribed = on_subscribed
    await run_with_timeout(monitor.run())

    assert snapshots == [False]
    assert monitor.reconnects == 1
    assert monitor.generation == 2
    assert transport.calls.count("connect") == 2
    assert "overdue" not in kinds(sink)
