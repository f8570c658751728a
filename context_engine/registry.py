"""Explicit registry of live session contexts.

Owned by the ContextEngine composition root; never a module-level singleton.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .models.archive import ArchiveRecord
from .models.events import utc_now
from .models.session import ContextScope, SessionContext
from .services.compression.event_log import parse_event_log
from .utils.errors import SessionNotFoundError
from .utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RegistryEntry:
    session: SessionContext
    archive: ArchiveRecord | None = None
    last_maintained: datetime | None = None
    flags: set[str] = field(default_factory=set)


class ContextRegistry:
    """Session records plus the archive metadata known for each."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self.clock = clock

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(
        self,
        session: SessionContext | None = None,
        **fields: Any,
    ) -> SessionContext:
        """Register a session record, or build one from SessionContext fields.

        Re-registering an id replaces its record but keeps archive metadata.
        """
        if session is None:
            session = SessionContext.model_validate(fields)
        previous = self._entries.get(session.session_id)
        entry = RegistryEntry(session=session)
        if previous is not None:
            entry.archive = previous.archive
            entry.last_maintained = previous.last_maintained
        self._entries[session.session_id] = entry
        logger.debug(
            "Session registered",
            extra={"session_id": session.session_id, "scope": session.scope.value},
        )
        return session

    def _entry(self, session_id: str) -> RegistryEntry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry

    def get(self, session_id: str) -> SessionContext:
        """Raises SessionNotFoundError for an unknown id."""
        return self._entry(session_id).session

    def find(self, session_id: str) -> SessionContext | None:
        entry = self._entries.get(session_id)
        return entry.session if entry else None

    def update_content(
        self,
        session_id: str,
        content: str,
        touch: bool = True,
        **changes: Any,
    ) -> SessionContext:
        """Replace a session's log and refresh its derived attributes."""
        entry = self._entry(session_id)
        update: dict[str, Any] = {
            "content": content,
            "events_count": len(parse_event_log(content).events),
        }
        if touch:
            update["last_activity"] = self.clock()
        update.update(changes)
        entry.session = entry.session.model_copy(update=update)
        return entry.session

    def unregister(self, session_id: str) -> bool:
        return self._entries.pop(session_id, None) is not None

    def list_sessions(self, scope: ContextScope | None = None) -> list[SessionContext]:
        sessions = [e.session for e in self._entries.values()]
        if scope is not None:
            sessions = [s for s in sessions if s.scope == scope]
        return sessions

    def list_for_maintenance(self) -> list[SessionContext]:
        """Sessions ordered oldest-maintained first; never-maintained come first."""
        entries = sorted(
            self._entries.values(),
            key=lambda e: (e.last_maintained is not None, e.last_maintained or e.session.created),
        )
        return [e.session for e in entries]

    def mark_maintained(self, session_id: str, when: datetime | None = None) -> None:
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.last_maintained = when or self.clock()

    def set_archive_record(self, session_id: str, record: ArchiveRecord | None) -> None:
        self._entry(session_id).archive = record

    def get_archive_record(self, session_id: str) -> ArchiveRecord | None:
        entry = self._entries.get(session_id)
        return entry.archive if entry else None

    def flag(self, session_id: str, flag: str) -> None:
        self._entry(session_id).flags.add(flag)

    def flagged(self, flag: str) -> list[str]:
        return sorted(sid for sid, e in self._entries.items() if flag in e.flags)

    def last_maintained(self, session_id: str) -> datetime | None:
        entry = self._entries.get(session_id)
        return entry.last_maintained if entry else None
