"""Pattern-based predicates over event content.

These heuristics are approximate on purpose: an explanatory sentence that
contains the word "fixed" is classified as resolved. Each predicate keeps its
pattern list public so it can be tested against literal fixtures.
"""

import re
from typing import Iterable

from ...models.events import WRAPPER_TAGS, Event

# Content carrying one of these markers is never treated as resolved
PROTECTED_MARKERS: tuple[str, ...] = ("TEST_DATA", "integrity_marker", "important_event")

RESOLVED_PATTERNS: list[re.Pattern] = [
    re.compile(r"status[:\s]*[\"']?(?:resolved|completed|success)\b", re.IGNORECASE),
    re.compile(r"error.*resolved", re.IGNORECASE),
    re.compile(r"fixed", re.IGNORECASE),
    re.compile(r"completed.*successfully", re.IGNORECASE),
]

CORRUPTION_PATTERNS: dict[str, re.Pattern] = {
    "control_characters": re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]"),
    "incomplete_tag": re.compile(r"<[^>]*\Z"),
    "incomplete_entity": re.compile(r"&[^;\s<>]*\Z"),
    "malformed_timestamp": re.compile(r"timestamp[:\s]*\"\""),
    "empty_tag": re.compile(r"<>"),
}

SEMANTIC_MARKERS: tuple[str, ...] = ("timestamp", "context", "session", "goal")

TIMESTAMP_FIELD_PATTERN = re.compile(r"timestamp[:\s]*[\"']([^\"']+)[\"']", re.IGNORECASE)


def is_resolved_content(content: str) -> bool:
    """True when content reads as a resolved error or a completed task."""
    if any(marker in content for marker in PROTECTED_MARKERS):
        return False
    return any(pattern.search(content) for pattern in RESOLVED_PATTERNS)


def is_essential_event(
    event: Event,
    essential_types: Iterable[str],
    index: int | None = None,
    total: int | None = None,
    preserve_recent: int = 3,
) -> bool:
    """True when an event must survive pruning.

    An event is essential when its type is allowlisted, when its content
    carries a protected marker, or when it is among the last
    `preserve_recent` events of a log of `total` events.
    """
    if event.type in set(essential_types):
        return True
    if any(marker in event.content for marker in PROTECTED_MARKERS):
        return True
    if index is not None and total is not None and preserve_recent > 0:
        return index >= total - preserve_recent
    return False


def detect_corruption_indicators(text: str) -> list[str]:
    """Names of every corruption pattern found in text."""
    return [name for name, pattern in CORRUPTION_PATTERNS.items() if pattern.search(text)]


def structure_markers(text: str) -> tuple[bool, bool]:
    """Whether a wrapper open tag and a wrapper close tag are present."""
    has_open = any(f"<{tag}>" in text for tag in WRAPPER_TAGS)
    has_close = any(f"</{tag}>" in text for tag in WRAPPER_TAGS)
    return has_open, has_close


def count_semantic_markers(text: str) -> int:
    lowered = text.lower()
    return sum(1 for marker in SEMANTIC_MARKERS if marker in lowered)
