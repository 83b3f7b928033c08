"""
Shared polling loop for location providers.

Concrete providers only implement `read()`; the loop handles change
suppression, retry-with-delay on failures and prompt cancellation.
"""

from __future__ import annotations

import abc
import asyncio
import datetime as dt
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from ..core.contracts import Clock, GeolocationState, Result, utcnow

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class ProviderReadError(RuntimeError):
    """Raised by `read()` when the source could not produce a reading."""


@dataclass(frozen=True, slots=True)
class Reading:
    lat: float
    lon: float
    alt: float | None
    accuracy_meters: float
    confidence: float


@dataclass(frozen=True, slots=True)
class Rung:
    """One step of the specificity ladder."""

    name: str
    accuracy_meters: float
    confidence: float


UNKNOWN = Rung("unknown", 1_000_000.0, 0.1)
COUNTRY = Rung("country", 300_000.0, 0.3)
REGION = Rung("region", 100_000.0, 0.5)
CITY = Rung("city", 15_000.0, 0.7)
POSTAL = Rung("postal", 3_000.0, 0.85)
STREET = Rung("street", 500.0, 0.95)

# Least to most precise.
SPECIFICITY_LADDER: tuple[Rung, ...] = (UNKNOWN, COUNTRY, REGION, CITY, POSTAL, STREET)


def rung_for_accuracy(accuracy_meters: float) -> Rung:
    """Tightest rung whose accuracy bound still covers a reported accuracy."""
    for rung in reversed(SPECIFICITY_LADDER[1:]):
        if accuracy_meters <= rung.accuracy_meters:
            return rung
    return UNKNOWN


class PollingProvider(abc.ABC):
    """
    Base class turning a periodic `read()` into an infinite result stream.

    The stream emits on the first successful read and afterwards only when
    the reading changed. Failures are logged and retried after
    `retry_period`; the stream never raises and only ends when the
    consuming task is cancelled or the generator is closed.
    """

    name: str = "polling"

    def __init__(
        self,
        *,
        period: float,
        ttl: float,
        retry_period: float | None = None,
        tolerance: float = 0.0,
        name: str | None = None,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        if period <= 0 or ttl <= 0:
            raise ValueError("period and ttl must be positive")
        if name:
            self.name = name
        self._period = period
        self._retry_period = retry_period if retry_period is not None else period
        self._ttl = dt.timedelta(seconds=ttl)
        self._tolerance = tolerance
        self._clock = clock or utcnow
        self._sleep = sleep or asyncio.sleep

    @property
    def period(self) -> float:
        return self._period

    @property
    def ttl(self) -> dt.timedelta:
        return self._ttl

    @abc.abstractmethod
    async def read(self) -> Reading:
        """Return the current reading or raise `ProviderReadError`."""

    async def close(self) -> None:
        """Release resources held between reads; called when a stream ends."""
        return None

    async def lookup_stream(self, key: str) -> AsyncIterator[Result]:
        state = GeolocationState(tolerance=self._tolerance)
        try:
            while True:
                reading = await self._read_once()
                if reading is None:
                    await self._sleep(self._retry_period)
                    continue
                if state.has_changed(
                    reading.lat, reading.lon, reading.alt, reading.accuracy_meters
                ):
                    result = self._create_result(key, reading)
                    if result is None:
                        await self._sleep(self._retry_period)
                        continue
                    state.update(reading.lat, reading.lon, reading.alt, reading.accuracy_meters)
                    yield result
                await self._sleep(self._period)
        finally:
            try:
                await self.close()
            except Exception as exc:
                logger.warning("Failed to release %s resources: %s", self.name, exc)

    async def _read_once(self) -> Reading | None:
        try:
            return await self.read()
        except ProviderReadError as exc:
            logger.warning(
                "%s lookup failed, retrying in %.0fs: %s", self.name, self._retry_period, exc
            )
        except Exception:
            logger.exception("%s lookup raised unexpectedly", self.name)
        return None

    def _create_result(self, key: str, reading: Reading) -> Result | None:
        try:
            return Result(
                key=key,
                lat=reading.lat,
                lon=reading.lon,
                alt=reading.alt,
                accuracy_meters=reading.accuracy_meters,
                confidence=reading.confidence,
                source=self.name,
                at=self._clock(),
                ttl=self._ttl,
            )
        except ValidationError as exc:
            logger.error("%s produced an invalid reading %s: %s", self.name, reading, exc)
            return None


__all__ = [
    "CITY",
    "COUNTRY",
    "POSTAL",
    "PollingProvider",
    "ProviderReadError",
    "REGION",
    "Reading",
    "Rung",
    "SPECIFICITY_LADDER",
    "STREET",
    "UNKNOWN",
    "rung_for_accuracy",
]
