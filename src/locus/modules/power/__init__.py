"""Power-management integration: suspend/resume detection."""

from .dbus_system_bus import BusConnectionError, DbusSystemBus
from .sleep_monitor import MonitorState, SleepResumeMonitor

__all__ = ["BusConnectionError", "DbusSystemBus", "MonitorState", "SleepResumeMonitor"]
