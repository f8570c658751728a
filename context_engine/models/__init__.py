"""Data models for the context engine."""

from .archive import ArchiveLevel, ArchiveRecord, CleanupReport, RestoreResult, SessionSnapshot
from .events import DEFAULT_WRAPPER_TAG, Event, EventLog
from .health import HealthLevel, HealthRecord, HealthScores, MaintenanceResult
from .monitor import MonitorState, TrendDirection, TrendReport, UsageLevel, UsageSample
from .session import ContextScope, SessionContext

__all__ = [
    "ArchiveLevel",
    "ArchiveRecord",
    "CleanupReport",
    "ContextScope",
    "DEFAULT_WRAPPER_TAG",
    "Event",
    "EventLog",
    "HealthLevel",
    "HealthRecord",
    "HealthScores",
    "MaintenanceResult",
    "MonitorState",
    "RestoreResult",
    "SessionContext",
    "SessionSnapshot",
    "TrendDirection",
    "TrendReport",
    "UsageLevel",
    "UsageSample",
]
