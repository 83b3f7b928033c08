"""
Watch the system bus for suspend/resume and force a location refresh after
the host wakes up.

The monitor keeps a resilient bus connection: it reconnects with fixed
delays whenever connecting, subscribing or listening fails, and only stops
when the module is stopped. Resume signals are debounced and each accepted
one schedules a refresh after a network wake-up grace period.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from ...core.contracts import BaseModule, HealthStatus, ModuleConfig, RefreshCallback
from .dbus_system_bus import DbusSystemBus

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    STOPPED = "stopped"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class SleepSignalConnection(Protocol):
    """Bus connection able to deliver PrepareForSleep signal bodies."""

    async def subscribe_prepare_for_sleep(self) -> None: ...

    def signals(self) -> AsyncIterator[list[Any]]: ...

    async def close(self) -> None: ...


BusFactory = Callable[[], Awaitable[SleepSignalConnection]]


class SleepResumeMonitor(BaseModule):
    """Trigger `on_resume` once per genuine resume from suspend."""

    name = "modules.power.sleep_monitor"

    def __init__(
        self,
        on_resume: RefreshCallback | None = None,
        *,
        bus_factory: BusFactory | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        super().__init__()
        self._on_resume = on_resume
        self._bus_factory: BusFactory = bus_factory or DbusSystemBus.connect
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._enabled = True
        self._bus_reconnect_delay = 5.0
        self._subscribe_retry_delay = 10.0
        self._reconnect_delay = 2.0
        self._debounce_window = 2.0
        self._network_wakeup_delay = 5.0
        self._state = MonitorState.STOPPED
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup_tasks: set[asyncio.Task[None]] = set()
        self._resume_lock = threading.Lock()
        self._last_resume: float | None = None
        self._connections_total = 0
        self._resumes_accepted = 0
        self._resumes_debounced = 0
        self._refreshes_triggered = 0

    @property
    def state(self) -> MonitorState:
        return self._state

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._enabled = bool(options.get("enabled", config.enabled))
        self._bus_reconnect_delay = float(
            options.get("bus_reconnect_delay_seconds", self._bus_reconnect_delay)
        )
        self._subscribe_retry_delay = float(
            options.get("subscribe_retry_delay_seconds", self._subscribe_retry_delay)
        )
        self._reconnect_delay = float(options.get("reconnect_delay_seconds", self._reconnect_delay))
        self._debounce_window = float(options.get("debounce_window_seconds", self._debounce_window))
        self._network_wakeup_delay = float(
            options.get("network_wakeup_delay_seconds", self._network_wakeup_delay)
        )

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if not self._enabled:
            logger.info("SleepResumeMonitor disabled.")
            return
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-loop")
            logger.info("SleepResumeMonitor watching the system bus for resume events")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        pending = list(self._wakeup_tasks)
        self._wakeup_tasks.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._state = MonitorState.STOPPED

    async def health(self) -> HealthStatus:
        if not self._enabled:
            status = "healthy"
        elif self._state is MonitorState.SUBSCRIBED:
            status = "healthy"
        else:
            status = "degraded"
        return HealthStatus(
            status=status,
            details={
                "enabled": self._enabled,
                "state": self._state.value,
                "connections_total": self._connections_total,
                "resumes_accepted": self._resumes_accepted,
                "resumes_debounced": self._resumes_debounced,
                "refreshes_triggered": self._refreshes_triggered,
            },
        )

    def handle_signal(self, body: list[Any]) -> bool:
        """
        Process one PrepareForSleep body; return True when a refresh was scheduled.

        The payload is a single bool: True when entering sleep, False on resume.
        Safe to call from other threads once the monitor has started.
        """
        if len(body) != 1 or not isinstance(body[0], bool):
            logger.debug("Ignoring malformed PrepareForSleep payload %r", body)
            return False
        if body[0]:
            logger.debug("Host is preparing for sleep")
            return False
        return self._handle_resume()

    async def _run(self) -> None:
        try:
            while True:
                self._state = MonitorState.DISCONNECTED
                connection = await self._connect()
                self._state = MonitorState.CONNECTING
                subscribed = False
                try:
                    subscribed = await self._subscribe(connection)
                    if subscribed:
                        self._state = MonitorState.SUBSCRIBED
                        logger.debug("Subscribed to logind PrepareForSleep signal")
                        await self._listen(connection)
                finally:
                    await self._close(connection)
                self._state = MonitorState.DISCONNECTED
                if subscribed:
                    logger.info(
                        "System bus signal stream ended; reconnecting in %.0fs",
                        self._reconnect_delay,
                    )
                    await self._sleep(self._reconnect_delay)
                else:
                    await self._sleep(self._subscribe_retry_delay)
        finally:
            self._state = MonitorState.STOPPED

    async def _connect(self) -> SleepSignalConnection:
        while True:
            try:
                connection = await self._bus_factory()
            except Exception as exc:
                logger.warning(
                    "Failed to connect to system bus, retrying in %.0fs: %s",
                    self._bus_reconnect_delay,
                    exc,
                )
                await self._sleep(self._bus_reconnect_delay)
                continue
            self._connections_total += 1
            return connection

    async def _subscribe(self, connection: SleepSignalConnection) -> bool:
        try:
            await connection.subscribe_prepare_for_sleep()
        except Exception as exc:
            logger.error(
                "Failed to subscribe to logind PrepareForSleep signal, retrying in %.0fs: %s",
                self._subscribe_retry_delay,
                exc,
            )
            return False
        return True

    async def _listen(self, connection: SleepSignalConnection) -> None:
        signals = connection.signals()
        try:
            async for body in signals:
                self.handle_signal(body)
        except Exception as exc:
            logger.warning("System bus signal stream failed: %s", exc)
        finally:
            aclose = getattr(signals, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    async def _close(self, connection: SleepSignalConnection) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.error("Failed to close system bus connection: %s", exc)

    def _handle_resume(self) -> bool:
        now = self._clock()
        with self._resume_lock:
            last = self._last_resume
            if last is not None and now - last < self._debounce_window:
                self._resumes_debounced += 1
                logger.debug("Debounced resume event %.2fs after the previous one", now - last)
                return False
            self._last_resume = now
            self._resumes_accepted += 1
        logger.info(
            "Resumed from sleep; refreshing location in %.0fs", self._network_wakeup_delay
        )
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None and (self._loop is None or running is self._loop):
            self._spawn_refresh()
        elif self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._spawn_refresh)
        else:
            logger.warning("Resume detected outside a running monitor; no refresh scheduled.")
            return False
        return True

    def _spawn_refresh(self) -> None:
        task = asyncio.create_task(self._refresh_after_wakeup(), name=f"{self.name}-wakeup")
        self._wakeup_tasks.add(task)

        def _on_done(t: asyncio.Task[None]) -> None:
            self._wakeup_tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Forced refresh after resume failed", exc_info=exc)

        task.add_done_callback(_on_done)

    async def _refresh_after_wakeup(self) -> None:
        await self._sleep(self._network_wakeup_delay)
        if self._on_resume is None:
            logger.warning("Resume detected but no refresh callback is configured.")
            return
        self._refreshes_triggered += 1
        await self._on_resume()


__all__ = ["BusFactory", "MonitorState", "SleepResumeMonitor", "SleepSignalConnection"]
