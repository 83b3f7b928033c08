"""
Lifecycle coordinator for locus modules.

The orchestrator owns the fusion hub, configures modules, starts them in
registration order and stops them in reverse before shutting the hub down.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .contracts import BaseModule, HealthStatus, ModuleConfig
from .hub import FusionHub

logger = logging.getLogger(__name__)


class Orchestrator:
    """Manage module lifecycle and shared infrastructure."""

    def __init__(
        self,
        *,
        hub: FusionHub | None = None,
        health_interval: float = 60.0,
        report_health: bool = True,
    ) -> None:
        self.hub = hub or FusionHub()
        self._modules: list[BaseModule] = []
        self._running = False
        self._health_interval = health_interval
        self._report_health = report_health
        self._health_task: asyncio.Task[None] | None = None

    @property
    def modules(self) -> list[BaseModule]:
        return list(self._modules)

    async def add_module(self, module: BaseModule, config: ModuleConfig | None = None) -> None:
        """
        Register a module with an optional configuration.

        Configuration defaults to the module's baseline if one is not
        provided.
        """
        if config is None:
            config = ModuleConfig()
        await module.configure(config)
        self._modules.append(module)
        logger.info("Registered module %s", module.name)

    async def start(self) -> None:
        """Start all registered modules."""
        if self._running:
            logger.warning("Orchestrator already running.")
            return
        for module in self._modules:
            logger.info("Starting module %s", module.name)
            await module.start()
        self._running = True
        if self._report_health:
            self._health_task = asyncio.create_task(self._health_loop(), name="locus-health")
        logger.info("Orchestrator started %d modules.", len(self._modules))

    async def stop(self) -> None:
        """Stop all modules in reverse order and shut down the hub."""
        if not self._running:
            logger.warning("Orchestrator stop requested while not running.")
            return
        if self._health_task:
            self._health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._health_task
            self._health_task = None
        for module in reversed(self._modules):
            try:
                await module.stop()
            except Exception:
                logger.exception("Module %s failed to stop cleanly", module.name)
        await self.hub.stop()
        self._running = False
        logger.info("Orchestrator stopped.")

    async def health(self) -> dict[str, HealthStatus]:
        """Aggregate health information from the hub and all modules."""
        reports: dict[str, HealthStatus] = {"hub": await self.hub.health()}
        for module in self._modules:
            reports[module.name] = await module.health()
        return reports

    async def _health_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._health_interval)
            reports = await self.health()
            overall = self.determine_overall_status(reports)
            if overall == "healthy":
                logger.debug("Health: %s", overall)
            else:
                logger.warning(
                    "Health: %s (%s)",
                    overall,
                    {name: report.status for name, report in reports.items()},
                )

    @staticmethod
    def determine_overall_status(reports: dict[str, HealthStatus]) -> str:
        statuses = {report.status for report in reports.values()}
        if "error" in statuses:
            return "error"
        if "degraded" in statuses:
            return "degraded"
        return "healthy"


__all__ = ["Orchestrator"]
