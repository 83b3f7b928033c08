"""
Long-running components managed by the orchestrator, grouped by responsibility.
"""

from .power.sleep_monitor import SleepResumeMonitor
from .refresh.location_refresher import LocationRefresher

__all__ = ["LocationRefresher", "SleepResumeMonitor"]
