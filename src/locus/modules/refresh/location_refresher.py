"""
Downstream consumer that re-runs a weather/address fetch whenever the
hub's estimate changes, and on demand after the host resumes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ...core.contracts import BaseModule, Estimate, FetchCallback, HealthStatus, ModuleConfig
from ...core.hub import FusionHub

logger = logging.getLogger(__name__)


async def log_estimate(estimate: Estimate) -> None:
    """Fallback fetch that only reports the estimate."""
    if estimate.result is None:
        logger.info("Location for %s is unknown (%s)", estimate.key, estimate.reason)
        return
    result = estimate.result
    logger.info(
        "Location for %s: %.5f,%.5f ±%.0fm via %s",
        estimate.key,
        result.lat,
        result.lon,
        result.accuracy_meters,
        result.source,
    )


class LocationRefresher(BaseModule):
    """Call `fetch` for every estimate change of one key."""

    name = "modules.refresh.location_refresher"

    def __init__(self, hub: FusionHub, fetch: FetchCallback | None = None) -> None:
        super().__init__()
        self._hub = hub
        self._fetch = fetch or log_estimate
        self._key = "host"
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._delivered: Estimate | None = None
        self._deliveries = 0
        self._forced = 0
        self._failures = 0
        self._last_error: str | None = None

    @property
    def key(self) -> str:
        return self._key

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        self._key = str(config.options.get("key", self._key))

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-{self._key}")
            logger.info("LocationRefresher following estimates for %s", self._key)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def refresh(self) -> None:
        """Force a fetch with the current estimate, changed or not."""
        self._forced += 1
        await self._deliver(self._hub.current_estimate(self._key))

    async def health(self) -> HealthStatus:
        status = "healthy" if self._last_error is None else "degraded"
        return HealthStatus(
            status=status,
            details={
                "key": self._key,
                "deliveries": self._deliveries,
                "forced": self._forced,
                "failures": self._failures,
                "last_error": self._last_error,
            },
        )

    async def _run(self) -> None:
        async with contextlib.aclosing(self._hub.subscribe(self._key)) as estimates:
            async for estimate in estimates:
                if self._delivered is None and not estimate.is_known:
                    continue
                if self._delivered is not None and estimate.result == self._delivered.result:
                    continue
                await self._deliver(estimate)

    async def _deliver(self, estimate: Estimate) -> None:
        async with self._lock:
            self._delivered = estimate
            try:
                await self._fetch(estimate)
            except Exception as exc:
                self._failures += 1
                self._last_error = str(exc) or type(exc).__name__
                logger.exception("Refresh for %s failed", estimate.key)
                return
            self._deliveries += 1
            self._last_error = None


__all__ = ["LocationRefresher", "log_estimate"]
