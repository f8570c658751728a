"""Tagged-block codec for session event logs.

A log is a wrapper element (``<workflow_context>`` or ``<session_context>``)
containing a sequence of ``<name>body</name>`` blocks. Parsing is lenient:
blocks without a matching close tag are skipped and never raise.
"""

import re
from datetime import datetime, timezone

from ...models.events import DEFAULT_WRAPPER_TAG, WRAPPER_TAGS, Event, EventLog, utc_now
from .heuristics import TIMESTAMP_FIELD_PATTERN, is_resolved_content

_WRAPPER_OPEN = re.compile(r"<(" + "|".join(WRAPPER_TAGS) + r")>")
_BLOCK = re.compile(r"<([^>/\s]+)>(.*?)</\1>", re.DOTALL)
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def parse_timestamp(body: str, default: datetime | None = None) -> datetime:
    """Read the `timestamp:` field of a block body.

    A trailing "Z" is accepted, naive values are taken as UTC, and a missing
    or unparseable value yields `default` (or the current time).
    """
    match = TIMESTAMP_FIELD_PATTERN.search(body)
    if match:
        value = match.group(1).strip()
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    return default or utc_now()


def _split_wrapper(text: str) -> tuple[str, str]:
    match = _WRAPPER_OPEN.search(text)
    if not match:
        return DEFAULT_WRAPPER_TAG, text

    wrapper = match.group(1)
    inner = text[match.end():]
    close = inner.rfind(f"</{wrapper}>")
    if close != -1:
        inner = inner[:close]
    return wrapper, inner


def parse_event_log(text: str) -> EventLog:
    """Parse serialized log text into an ordered EventLog.

    Document order is preserved; events are not sorted by timestamp.
    """
    if not text:
        return EventLog()

    wrapper, inner = _split_wrapper(text)
    now = utc_now()
    events = []
    for match in _BLOCK.finditer(inner):
        tag, body = match.group(1), match.group(2)
        if tag in WRAPPER_TAGS:
            continue
        content = body.strip()
        events.append(
            Event(
                type=tag,
                content=content,
                raw=match.group(0),
                timestamp=parse_timestamp(content, default=now),
                resolved=is_resolved_content(content),
            )
        )
    return EventLog(events=events, wrapper=wrapper)


def normalize_whitespace(text: str) -> str:
    """Strip trailing spaces per line and collapse 3+ newlines into 2."""
    text = _TRAILING_SPACE.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()
