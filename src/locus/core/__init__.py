"""
Core infrastructure: value contracts, the selection rule, the fusion hub
and the orchestrator that runs modules around it.

Configuration lives in `locus.core.config`, which is imported explicitly
because it builds providers on top of this package.
"""

from .contracts import (
    BaseModule,
    Estimate,
    GeolocationState,
    HealthStatus,
    ModuleConfig,
    Provider,
    Result,
)
from .hub import FusionHub
from .orchestrator import Orchestrator
from .selection import select_best, supersedes

__all__ = [
    "BaseModule",
    "Estimate",
    "FusionHub",
    "GeolocationState",
    "HealthStatus",
    "ModuleConfig",
    "Orchestrator",
    "Provider",
    "Result",
    "select_best",
    "supersedes",
]
