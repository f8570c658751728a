"""Health scoring records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class HealthLevel(str, Enum):
    """Discrete health level derived from the overall score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"
    FAILING = "failing"


@dataclass
class HealthScores:
    """The five weighted sub-scores, each in [0, 1]."""

    freshness: float
    usage_pattern: float
    data_integrity: float
    compression_health: float
    token_efficiency: float

    def to_dict(self) -> dict[str, float]:
        return {
            "freshness": self.freshness,
            "usage_pattern": self.usage_pattern,
            "data_integrity": self.data_integrity,
            "compression_health": self.compression_health,
            "token_efficiency": self.token_efficiency,
        }


@dataclass
class HealthRecord:
    """Health assessment of one session at one point in time."""

    context_id: str
    timestamp: datetime
    overall_score: float
    level: HealthLevel
    scores: HealthScores
    recommendations: list[str] = field(default_factory=list)
    tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_id": self.context_id,
            "timestamp": self.timestamp.isoformat(),
            "overall_score": round(self.overall_score, 4),
            "level": self.level.value,
            "scores": {k: round(v, 4) for k, v in self.scores.to_dict().items()},
            "recommendations": list(self.recommendations),
            "tokens": self.tokens,
        }


@dataclass
class MaintenanceResult:
    """Outcome of one maintenance job for one session."""

    context_id: str
    success: bool
    skipped: bool = False
    reason: str | None = None
    health: HealthRecord | None = None
    actions: list[str] = field(default_factory=list)
    duration_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_id": self.context_id,
            "success": self.success,
            "skipped": self.skipped,
            "reason": self.reason,
            "health": self.health.to_dict() if self.health else None,
            "actions": list(self.actions),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }
