"""Session context models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from ..utils.errors import InvalidScopeError


class ContextScope(str, Enum):
    """Lifetime class of a context.

    Scopes differ only in default retention, never in algorithm.
    """
    SESSION = "session"
    PROJECT = "project"

    @classmethod
    def parse(cls, value: "str | ContextScope") -> "ContextScope":
        """Coerce a scope name, raising InvalidScopeError for unknown values."""
        if isinstance(value, ContextScope):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidScopeError(str(value))

    @property
    def archive_subdir(self) -> str:
        return "projects" if self is ContextScope.PROJECT else "sessions"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionContext(BaseModel):
    """The full event log of one unit of work plus its activity metadata."""

    session_id: str = Field(..., min_length=1, description="Session identifier")
    scope: ContextScope = Field(default=ContextScope.SESSION)
    content: str = Field(default="", description="Serialized tagged-block event log")
    last_activity: datetime = Field(default_factory=_utc_now)
    created: datetime = Field(default_factory=_utc_now)
    events_count: int = Field(default=0, ge=0)
    current_task: str | None = Field(default=None)
    stack_depth: int = Field(default=0, ge=0, description="Nesting of sub-context switches")

    model_config = {
        "extra": "ignore",
    }

    @field_validator("scope", mode="before")
    @classmethod
    def validate_scope(cls, v: object) -> ContextScope:
        return ContextScope.parse(v)  # type: ignore[arg-type]

    @field_validator("last_activity", "created")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    def idle_seconds(self, now: datetime | None = None) -> float:
        """Seconds since last activity."""
        return ((now or _utc_now()) - self.last_activity).total_seconds()
