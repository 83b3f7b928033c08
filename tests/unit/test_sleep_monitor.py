import asyncio

import pytest
from fakes import wait_until

from locus.core.contracts import ModuleConfig
from locus.modules.power.sleep_monitor import MonitorState, SleepResumeMonitor

FAST_DELAYS = {
    "bus_reconnect_delay_seconds": 0.01,
    "subscribe_retry_delay_seconds": 0.01,
    "reconnect_delay_seconds": 0.01,
    "network_wakeup_delay_seconds": 0.0,
}


class FakeConnection:
    def __init__(self, *, fail_subscribe: bool = False) -> None:
        self.fail_subscribe = fail_subscribe
        self.subscribed = False
        self.closed = 0
        self.bodies: asyncio.Queue = asyncio.Queue()

    async def subscribe_prepare_for_sleep(self) -> None:
        if self.fail_subscribe:
            raise RuntimeError("AddMatch rejected")
        self.subscribed = True

    async def signals(self):
        while True:
            body = await self.bodies.get()
            if body is None:
                return
            yield body

    async def close(self) -> None:
        self.closed += 1


class RefreshRecorder:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


async def _monitor(on_resume=None, *, clock=None, bus_factory=None, **options):
    monitor = SleepResumeMonitor(on_resume, clock=clock, bus_factory=bus_factory)
    await monitor.configure(ModuleConfig(options={**FAST_DELAYS, **options}))
    return monitor


@pytest.mark.asyncio
async def test_resumes_inside_debounce_window_collapse_into_one_refresh() -> None:
    now = [100.0]
    refresh = RefreshRecorder()
    monitor = await _monitor(refresh, clock=lambda: now[0], debounce_window_seconds=2.0)

    assert monitor.handle_signal([False])
    now[0] = 100.5
    assert not monitor.handle_signal([False])
    now[0] = 101.9
    assert not monitor.handle_signal([False])
    await wait_until(lambda: refresh.calls == 1)

    health = await monitor.health()
    assert health.details["resumes_accepted"] == 1
    assert health.details["resumes_debounced"] == 2
    await monitor.stop()


@pytest.mark.asyncio
async def test_resumes_outside_debounce_window_each_refresh() -> None:
    now = [100.0]
    refresh = RefreshRecorder()
    monitor = await _monitor(refresh, clock=lambda: now[0], debounce_window_seconds=2.0)

    assert monitor.handle_signal([False])
    now[0] = 103.0
    assert monitor.handle_signal([False])
    await wait_until(lambda: refresh.calls == 2)
    await monitor.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[True], [], ["false"], [False, True], [0]])
async def test_sleep_entry_and_malformed_payloads_are_ignored(body) -> None:
    refresh = RefreshRecorder()
    monitor = await _monitor(refresh)

    assert not monitor.handle_signal(body)
    await asyncio.sleep(0.01)

    assert refresh.calls == 0
    await monitor.stop()


@pytest.mark.asyncio
async def test_refresh_waits_for_network_wakeup_delay() -> None:
    refresh = RefreshRecorder()
    monitor = await _monitor(refresh, network_wakeup_delay_seconds=0.1)

    assert monitor.handle_signal([False])
    await asyncio.sleep(0.02)
    assert refresh.calls == 0

    await wait_until(lambda: refresh.calls == 1)
    await monitor.stop()


@pytest.mark.asyncio
async def test_failed_refresh_is_logged_and_monitor_keeps_running(caplog) -> None:
    async def failing_refresh() -> None:
        raise RuntimeError("network unreachable")

    monitor = await _monitor(failing_refresh)

    with caplog.at_level("ERROR"):
        assert monitor.handle_signal([False])
        await wait_until(lambda: "Forced refresh after resume failed" in caplog.text)
    await monitor.stop()


@pytest.mark.asyncio
async def test_reconnects_through_connect_and_subscribe_failures() -> None:
    rejecting = FakeConnection(fail_subscribe=True)
    first = FakeConnection()
    second = FakeConnection()
    connections = [rejecting, first, second]
    attempts = 0

    async def bus_factory():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConnectionError("system bus unavailable")
        return connections.pop(0)

    refresh = RefreshRecorder()
    monitor = await _monitor(refresh, bus_factory=bus_factory)
    await monitor.start()

    await wait_until(lambda: first.subscribed and monitor.state is MonitorState.SUBSCRIBED)
    assert rejecting.closed == 1

    first.bodies.put_nowait([False])
    await wait_until(lambda: refresh.calls == 1)

    first.bodies.put_nowait(None)
    await wait_until(lambda: second.subscribed and monitor.state is MonitorState.SUBSCRIBED)
    assert first.closed == 1

    health = await monitor.health()
    assert health.status == "healthy"
    assert health.details["connections_total"] == 3

    await monitor.stop()
    assert second.closed == 1
    assert monitor.state is MonitorState.STOPPED
    assert attempts == 4


@pytest.mark.asyncio
async def test_disabled_monitor_does_not_connect() -> None:
    attempts = 0

    async def bus_factory():
        nonlocal attempts
        attempts += 1
        return FakeConnection()

    monitor = await _monitor(bus_factory=bus_factory, enabled=False)
    await monitor.start()
    await asyncio.sleep(0.02)

    assert attempts == 0
    assert (await monitor.health()).status == "healthy"
    await monitor.stop()


@pytest.mark.asyncio
async def test_resume_delivered_from_another_thread_schedules_refresh() -> None:
    refresh = RefreshRecorder()
    monitor = await _monitor(refresh, enabled=False)
    await monitor.start()

    accepted = await asyncio.to_thread(monitor.handle_signal, [False])

    assert accepted
    await wait_until(lambda: refresh.calls == 1)
    assert (await monitor.health()).details["resumes_accepted"] == 1
    await monitor.stop()


def test_resume_without_running_monitor_is_not_scheduled() -> None:
    monitor = SleepResumeMonitor(RefreshRecorder())

    assert not monitor.handle_signal([False])


@pytest.mark.asyncio
async def test_state_tracks_each_connection_phase() -> None:
    bus_ready = asyncio.Event()
    subscribe_ready = asyncio.Event()
    connection = FakeConnection()
    original_subscribe = connection.subscribe_prepare_for_sleep

    async def slow_subscribe() -> None:
        await subscribe_ready.wait()
        await original_subscribe()

    connection.subscribe_prepare_for_sleep = slow_subscribe

    async def bus_factory():
        await bus_ready.wait()
        return connection

    monitor = await _monitor(bus_factory=bus_factory)
    await monitor.start()

    await wait_until(lambda: monitor.state is MonitorState.DISCONNECTED)
    assert (await monitor.health()).status == "degraded"
    bus_ready.set()
    await wait_until(lambda: monitor.state is MonitorState.CONNECTING)
    subscribe_ready.set()
    await wait_until(lambda: monitor.state is MonitorState.SUBSCRIBED)
    assert (await monitor.health()).status == "healthy"

    await monitor.stop()
    assert connection.closed == 1
    assert monitor.state is MonitorState.STOPPED
