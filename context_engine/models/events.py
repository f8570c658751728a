"""Session event log data model.

An event is one tagged block of the session log. Events are immutable: pruning
replaces groups of events with synthetic events instead of editing them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


DEFAULT_WRAPPER_TAG = "workflow_context"
WRAPPER_TAGS = ("workflow_context", "session_context")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way event bodies carry it (ISO 8601, Z suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def render_block(tag: str, body: str) -> str:
    """Serialize a tag name and body into one well-formed tagged block."""
    return f"<{tag}>\n{body.strip(chr(10))}\n</{tag}>"


@dataclass(frozen=True)
class Event:
    """One recorded unit of the session log.

    Attributes:
        type: Tag name of the block
        content: Stripped body text
        raw: Verbatim serialized block, used to rebuild the log
        timestamp: Parsed `timestamp:` field, or parse time when absent
        resolved: Whether the body reads as a completed/fixed/successful item
        synthetic: True for summary/compacted events created by pruning
    """

    type: str
    content: str
    raw: str
    timestamp: datetime
    resolved: bool = False
    synthetic: bool = False

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the event timestamp."""
        return (now or utc_now()) - self.timestamp

    def age_seconds(self, now: datetime | None = None) -> float:
        return self.age(now).total_seconds()

    @classmethod
    def synthesize(
        cls,
        tag: str,
        fields: dict[str, object],
        lines: list[str] | None = None,
        timestamp: datetime | None = None,
    ) -> "Event":
        """Build a synthetic event from key/value fields and free-form lines."""
        timestamp = timestamp or utc_now()
        body_lines = [f'    timestamp: "{format_timestamp(timestamp)}"']
        for key, value in fields.items():
            if isinstance(value, str):
                body_lines.append(f'    {key}: "{value}"')
            else:
                body_lines.append(f"    {key}: {value}")
        for line in lines or []:
            body_lines.append(f"    {line}")
        body = "\n".join(body_lines)
        return cls(
            type=tag,
            content=body.strip(),
            raw=render_block(tag, body),
            timestamp=timestamp,
            resolved=False,
            synthetic=True,
        )


@dataclass
class EventLog:
    """Ordered events of one session plus the wrapper tag they were found in."""

    events: list[Event] = field(default_factory=list)
    wrapper: str = DEFAULT_WRAPPER_TAG

    def __len__(self) -> int:
        return len(self.events)

    def with_events(self, events: list[Event]) -> "EventLog":
        return EventLog(events=list(events), wrapper=self.wrapper)

    def serialize(self) -> str:
        """Rebuild the log text from each event's verbatim block."""
        body = "\n\n".join(event.raw for event in self.events)
        return f"<{self.wrapper}>\n{body}\n</{self.wrapper}>"
