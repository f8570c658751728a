"""Archive tier and archive record models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .session import ContextScope, ensure_aware

DAY_SECONDS = 24 * 60 * 60


class ArchiveLevel(str, Enum):
    """Compression tier of an archived context, selected by idle age."""
    ACTIVE = "Active"
    DORMANT = "Dormant"
    SLEEPING = "Sleeping"
    DEEP_SLEEP = "Deep-Sleep"

    @property
    def age_threshold_days(self) -> int:
        return _TIER_POLICY[self][0]

    @property
    def target_ratio(self) -> float:
        """Target fraction of the original size kept after compression."""
        return _TIER_POLICY[self][1]

    @property
    def description(self) -> str:
        return _TIER_POLICY[self][2]

    @classmethod
    def for_idle_age(cls, age_seconds: float) -> "ArchiveLevel":
        """Select the tier for an idle age, checking the oldest threshold first."""
        for level in reversed(list(cls)):
            if age_seconds >= level.age_threshold_days * DAY_SECONDS:
                return level
        return cls.ACTIVE


_TIER_POLICY: dict[ArchiveLevel, tuple[int, float, str]] = {
    ArchiveLevel.ACTIVE: (0, 0.7, "Currently active contexts"),
    ArchiveLevel.DORMANT: (7, 0.5, "Inactive for a week, light compression"),
    ArchiveLevel.SLEEPING: (30, 0.3, "Inactive for a month, moderate compression"),
    ArchiveLevel.DEEP_SLEEP: (90, 0.2, "Long-term archive, maximum compression"),
}


class SessionSnapshot(BaseModel):
    """Compact snapshot of session attributes stored with an archive."""

    scope: ContextScope
    events_count: int = 0
    stack_depth: int = 0
    current_task: str | None = None
    created: datetime | None = None


class ArchiveRecord(BaseModel):
    """Metadata of one archived context.

    The fingerprint is computed over the compressed content that is stored,
    so restoration can detect corruption by recomputing it.
    """

    context_id: str
    scope: ContextScope
    archive_level: ArchiveLevel
    original_size: int = Field(..., ge=0, description="Original size in bytes")
    compressed_size: int = Field(..., ge=0, description="Compressed size in bytes")
    compression_ratio: float = Field(..., ge=0.0, description="compressed_size / original_size")
    fingerprint: str
    original_tokens: int = Field(..., ge=0)
    compressed_tokens: int = Field(..., ge=0)
    archived_at: datetime
    last_activity: datetime
    age_seconds: float = Field(..., ge=0.0, description="Idle age at archive time")
    context_metadata: SessionSnapshot

    @field_validator("archived_at", "last_activity")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)


@dataclass
class RestoreResult:
    """Outcome of restoring an archived context."""

    context_id: str
    scope: ContextScope
    content: str
    metadata: ArchiveRecord
    time_gap_seconds: float
    restore_time_ms: float
    performance_met: bool
    integrity_verified: bool
    restoration_summary: dict[str, Any] = field(default_factory=dict)

    @property
    def time_gap_days(self) -> int:
        return int(self.time_gap_seconds // DAY_SECONDS)


@dataclass
class CleanupReport:
    """Result of an expired-archive cleanup sweep."""

    count: int = 0
    freed_bytes: int = 0
    errors: list[str] = field(default_factory=list)
