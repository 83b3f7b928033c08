"""
Contracts and value types shared by providers, the fusion hub and modules.

Results and estimates are frozen pydantic models: the hub and providers
replace them as whole values and never mutate fields in place.
"""

from __future__ import annotations

import abc
import datetime as dt
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> dt.datetime:
    """Timezone-aware UTC wall clock used for observation timestamps."""
    return dt.datetime.now(tz=dt.UTC)


Clock = Callable[[], dt.datetime]


class Result(BaseModel):
    """One location observation emitted by a provider."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Logical subject being located.")
    lat: float = Field(ge=-90.0, le=90.0, description="Latitude in degrees.")
    lon: float = Field(ge=-180.0, le=180.0, description="Longitude in degrees.")
    alt: float | None = Field(
        default=None, description="Altitude in meters; None when the source cannot measure it."
    )
    accuracy_meters: float = Field(ge=0.0, description="Uncertainty radius, smaller is better.")
    confidence: float = Field(ge=0.0, le=1.0, description="Provider's trust in this reading.")
    source: str = Field(description="Name of the provider that produced the reading.")
    at: dt.datetime = Field(default_factory=utcnow, description="Observation timestamp.")
    ttl: dt.timedelta = Field(description="Lifetime after which the reading is stale.")

    @field_validator("at")
    @classmethod
    def _require_aware(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value

    @field_validator("ttl")
    @classmethod
    def _positive_ttl(cls, value: dt.timedelta) -> dt.timedelta:
        if value <= dt.timedelta(0):
            raise ValueError("ttl must be positive")
        return value

    @property
    def expires_at(self) -> dt.datetime:
        return self.at + self.ttl

    def is_expired(self, now: dt.datetime) -> bool:
        return now >= self.expires_at


class Estimate(BaseModel):
    """Snapshot of the hub's current best result for a key."""

    model_config = ConfigDict(frozen=True)

    key: str
    result: Result | None = Field(
        default=None, description="Winning result, or None when the location is unknown."
    )
    changed_at: dt.datetime = Field(default_factory=utcnow)
    reason: str = Field(
        default="initial",
        description="Why the estimate changed: initial/selected/expired.",
    )

    @property
    def is_known(self) -> bool:
        return self.result is not None

    @property
    def expires_at(self) -> dt.datetime | None:
        return self.result.expires_at if self.result is not None else None


class GeolocationState:
    """
    Last emitted reading of a single provider stream.

    Used purely for change suppression: a stream only emits when
    `has_changed` reports a difference beyond `tolerance`.
    """

    def __init__(self, *, tolerance: float = 0.0) -> None:
        self._tolerance = tolerance
        self._initialized = False
        self.lat = 0.0
        self.lon = 0.0
        self.alt: float | None = None
        self.accuracy = 0.0

    def has_changed(self, lat: float, lon: float, alt: float | None, accuracy: float) -> bool:
        if not self._initialized:
            return True
        if self._differs(self.lat, lat) or self._differs(self.lon, lon):
            return True
        if self._differs(self.accuracy, accuracy):
            return True
        if self.alt is None or alt is None:
            return self.alt is not alt
        return self._differs(self.alt, alt)

    def update(self, lat: float, lon: float, alt: float | None, accuracy: float) -> None:
        self.lat = lat
        self.lon = lon
        self.alt = alt
        self.accuracy = accuracy
        self._initialized = True

    def _differs(self, old: float, new: float) -> bool:
        if self._tolerance <= 0.0:
            return old != new
        return abs(old - new) > self._tolerance


@runtime_checkable
class Provider(Protocol):
    """
    A source of location readings.

    `lookup_stream` returns a lazy, infinite async iterator. It never raises
    and never ends on its own; the consuming task stops it by cancellation
    or by closing the generator.
    """

    name: str

    def lookup_stream(self, key: str) -> AsyncIterator[Result]: ...


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to all modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


RefreshCallback = Callable[[], Awaitable[None]]
FetchCallback = Callable[[Estimate], Awaitable[None]]


class BaseModule(abc.ABC):
    """
    Abstract base class for long-running components managed by the orchestrator.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin processing by scheduling background tasks."""

    async def stop(self) -> None:
        """
        Optional hook to release resources.

        Base implementation is a no-op so subclasses can override only
        when needed without being forced to mark the method abstract.
        """
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})


__all__ = [
    "BaseModule",
    "Clock",
    "Estimate",
    "FetchCallback",
    "GeolocationState",
    "HealthStatus",
    "ModuleConfig",
    "Provider",
    "RefreshCallback",
    "Result",
    "utcnow",
]
