"""
dbus-fast connection delivering logind PrepareForSleep signals.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any

from dbus_fast import BusType, Message, MessageType
from dbus_fast.aio import MessageBus

logger = logging.getLogger(__name__)

LOGIN_MANAGER_INTERFACE = "org.freedesktop.login1.Manager"
PREPARE_FOR_SLEEP = "PrepareForSleep"
MATCH_RULE = f"type='signal',interface='{LOGIN_MANAGER_INTERFACE}',member='{PREPARE_FOR_SLEEP}'"
SIGNAL_BUFFER_SIZE = 8


class BusConnectionError(RuntimeError):
    """Raised when the system bus cannot be reached or refuses a subscription."""


class DbusSystemBus:
    """System bus connection exposing PrepareForSleep bodies as an async stream."""

    def __init__(self, bus: MessageBus, *, buffer_size: int = SIGNAL_BUFFER_SIZE) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[list[Any]] = asyncio.Queue(maxsize=buffer_size)
        self._handler_installed = False

    @classmethod
    async def connect(cls) -> DbusSystemBus:
        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except Exception as exc:
            raise BusConnectionError(f"cannot connect to system bus: {exc}") from exc
        logger.debug("Connected to system bus as %s", bus.unique_name)
        return cls(bus)

    async def subscribe_prepare_for_sleep(self) -> None:
        reply = await self._bus.call(
            Message(
                destination="org.freedesktop.DBus",
                path="/org/freedesktop/DBus",
                interface="org.freedesktop.DBus",
                member="AddMatch",
                signature="s",
                body=[MATCH_RULE],
            )
        )
        if reply is None or reply.message_type == MessageType.ERROR:
            detail = reply.body if reply is not None else "no reply"
            raise BusConnectionError(f"AddMatch for {PREPARE_FOR_SLEEP} failed: {detail}")
        self._bus.add_message_handler(self._on_message)
        self._handler_installed = True

    async def signals(self) -> AsyncIterator[list[Any]]:
        """Yield signal bodies until the bus connection drops."""
        disconnected = asyncio.ensure_future(self._bus.wait_for_disconnect())
        next_signal: asyncio.Future[list[Any]] | None = None
        try:
            while True:
                next_signal = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait(
                    {next_signal, disconnected}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_signal in done:
                    yield next_signal.result()
                    continue
                if not disconnected.cancelled() and disconnected.exception() is not None:
                    logger.warning("System bus disconnected: %s", disconnected.exception())
                return
        finally:
            for future in (next_signal, disconnected):
                if future is not None and not future.done():
                    future.cancel()
                    with contextlib.suppress(asyncio.CancelledError, Exception):
                        await future

    async def close(self) -> None:
        if self._handler_installed:
            self._bus.remove_message_handler(self._on_message)
            self._handler_installed = False
        self._bus.disconnect()

    def _on_message(self, message: Message) -> None:
        if message.message_type != MessageType.SIGNAL:
            return
        if message.interface != LOGIN_MANAGER_INTERFACE or message.member != PREPARE_FOR_SLEEP:
            return
        try:
            self._queue.put_nowait(list(message.body))
        except asyncio.QueueFull:
            logger.warning(
                "Dropping %s signal; buffer of %d is full", PREPARE_FOR_SLEEP, self._queue.maxsize
            )


__all__ = ["BusConnectionError", "DbusSystemBus", "MATCH_RULE"]
