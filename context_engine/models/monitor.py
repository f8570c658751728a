"""Context window monitor state models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class UsageLevel(str, Enum):
    """Usage level of a monitored context window, lowest first."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [UsageLevel.SAFE, UsageLevel.WARNING, UsageLevel.CRITICAL, UsageLevel.EMERGENCY]


class TrendDirection(str, Enum):
    STABLE = "stable"
    GROWING = "growing"
    RAPID_GROWTH = "rapid_growth"
    SHRINKING = "shrinking"


@dataclass
class UsageSample:
    """One point of the rolling usage history."""

    timestamp: datetime
    tokens: int
    percentage: float
    level: UsageLevel


@dataclass
class MonitorState:
    """Latest known usage of one monitored session."""

    tokens: int = 0
    percentage: float = 0.0
    level: UsageLevel = UsageLevel.SAFE
    last_check: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens,
            "percentage": round(self.percentage, 2),
            "level": self.level.value,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }


@dataclass
class TrendReport:
    """Usage slope over the trend window plus threshold ETA predictions.

    `slope` is in percentage points per second; `predictions` maps each
    not-yet-crossed level name to the estimated seconds until it is reached.
    """

    trend: TrendDirection = TrendDirection.STABLE
    slope: float = 0.0
    samples: int = 0
    predictions: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend": self.trend.value,
            "slope": self.slope,
            "samples": self.samples,
            "predictions": dict(self.predictions),
        }
