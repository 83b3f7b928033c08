"""
On-device positioning through the GeoClue2 D-Bus service.

The client session is kept open between reads so GeoClue can refine its
fix; any D-Bus failure drops the session and the next read starts over.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from dbus_fast import BusType
from dbus_fast.aio import MessageBus, ProxyInterface
from dbus_fast.errors import DBusError

from .base import PollingProvider, ProviderReadError, Reading, rung_for_accuracy

logger = logging.getLogger(__name__)

GEOCLUE_SERVICE = "org.freedesktop.GeoClue2"
MANAGER_PATH = "/org/freedesktop/GeoClue2/Manager"
MANAGER_INTERFACE = "org.freedesktop.GeoClue2.Manager"
CLIENT_INTERFACE = "org.freedesktop.GeoClue2.Client"
LOCATION_INTERFACE = "org.freedesktop.GeoClue2.Location"

ACCURACY_LEVEL_CITY = 4
ACCURACY_LEVEL_STREET = 6
ACCURACY_LEVEL_EXACT = 8
DEFAULT_TIMEOUT = 10.0

# GeoClue reports -DBL_MAX when altitude is unknown.
UNKNOWN_ALTITUDE = -1.7976931348623157e308


class LocationClient(Protocol):
    """Source of raw (lat, lon, alt, accuracy) fixes."""

    async def locate(self) -> tuple[float, float, float | None, float]: ...

    async def close(self) -> None: ...


class GeoClueClient:
    """Minimal GeoClue2 client built on dbus-fast."""

    def __init__(
        self,
        *,
        desktop_id: str = "locus",
        accuracy_level: int = ACCURACY_LEVEL_EXACT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._desktop_id = desktop_id
        self._accuracy_level = accuracy_level
        self._timeout = timeout
        self._bus: MessageBus | None = None
        self._client: ProxyInterface | None = None

    async def locate(self) -> tuple[float, float, float | None, float]:
        try:
            async with asyncio.timeout(self._timeout):
                lat, lon, altitude, accuracy = await self._query()
        except ProviderReadError:
            raise
        except TimeoutError as exc:
            await self.close()
            raise ProviderReadError(f"GeoClue did not answer within {self._timeout}s") from exc
        except Exception as exc:
            await self.close()
            raise ProviderReadError(f"GeoClue query failed: {exc}") from exc
        alt = None if altitude <= UNKNOWN_ALTITUDE else float(altitude)
        return float(lat), float(lon), alt, float(accuracy)

    async def _query(self) -> tuple[float, float, float, float]:
        if self._client is None:
            await self._start()
        assert self._client is not None
        location_path = await self._client.get_location()
        if not location_path or location_path == "/":
            raise ProviderReadError("GeoClue has no location fix yet")
        location = await self._interface(location_path, LOCATION_INTERFACE)
        return (
            await location.get_latitude(),
            await location.get_longitude(),
            await location.get_altitude(),
            await location.get_accuracy(),
        )

    async def close(self) -> None:
        client, bus = self._client, self._bus
        self._client = None
        self._bus = None
        if client is not None and bus is not None and bus.connected:
            try:
                await client.call_stop()
            except (DBusError, OSError, EOFError) as exc:
                logger.debug("Failed to stop GeoClue client: %s", exc)
        if bus is not None:
            bus.disconnect()

    async def _start(self) -> None:
        self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        manager = await self._interface(MANAGER_PATH, MANAGER_INTERFACE)
        client_path = await manager.call_get_client()
        client = await self._interface(client_path, CLIENT_INTERFACE)
        await client.set_desktop_id(self._desktop_id)
        await client.set_requested_accuracy_level(self._accuracy_level)
        await client.call_start()
        self._client = client
        logger.info("GeoClue client %s started", client_path)

    async def _interface(self, path: str, interface: str) -> Any:
        assert self._bus is not None
        introspection = await self._bus.introspect(GEOCLUE_SERVICE, path)
        proxy = self._bus.get_proxy_object(GEOCLUE_SERVICE, path, introspection)
        return proxy.get_interface(interface)


class GeoClueProvider(PollingProvider):
    """Reads the device position (GPS, Wi-Fi, cell) from GeoClue2."""

    name = "geoclue"

    def __init__(
        self,
        *,
        client: LocationClient | None = None,
        desktop_id: str = "locus",
        accuracy_level: int = ACCURACY_LEVEL_EXACT,
        timeout: float = DEFAULT_TIMEOUT,
        period: float = 300.0,
        ttl: float = 1800.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(period=period, ttl=ttl, **kwargs)
        self._client = client or GeoClueClient(
            desktop_id=desktop_id, accuracy_level=accuracy_level, timeout=timeout
        )

    async def read(self) -> Reading:
        lat, lon, alt, accuracy = await self._client.locate()
        rung = rung_for_accuracy(accuracy)
        return Reading(
            lat=lat,
            lon=lon,
            alt=alt,
            accuracy_meters=accuracy,
            confidence=rung.confidence,
        )

    async def close(self) -> None:
        await self._client.close()


__all__ = [
    "ACCURACY_LEVEL_CITY",
    "ACCURACY_LEVEL_EXACT",
    "ACCURACY_LEVEL_STREET",
    "GeoClueClient",
    "GeoClueProvider",
    "LocationClient",
]
