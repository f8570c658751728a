"""Context health scoring and background maintenance."""

from .health_monitor import CLEANUP_FLAG, ContextHealthMonitor
from .scheduler import MaintenanceScheduler

__all__ = ["CLEANUP_FLAG", "ContextHealthMonitor", "MaintenanceScheduler"]
