"""Tiered long-term archival of inactive session contexts.

The archive tier is chosen from idle age alone; its target ratio decides how
the pruner compresses the log. The stored fingerprint covers the compressed
content, so a restore can detect corruption of what is on disk.
"""

import hashlib
import re
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from ...config.models import PersistenceConfig
from ...models.archive import (
    DAY_SECONDS,
    ArchiveLevel,
    ArchiveRecord,
    CleanupReport,
    RestoreResult,
    SessionSnapshot,
)
from ...models.events import WRAPPER_TAGS, Event, utc_now
from ...models.session import ContextScope, SessionContext
from ...utils.errors import ArchiveNotFoundError, ScopeMismatchError
from ...utils.logger import get_logger
from ..compression.event_log import parse_event_log
from ..compression.pruner import ContextPruner
from ..compression.token_counter import TokenCounter
from .archive_store import ArchiveStore

logger = get_logger(__name__)

# Tiers at or above this target ratio are compressed gently
SMART_PRUNE_MIN_RATIO = 0.3

_WRAPPER_OPEN = re.compile(r"<(" + "|".join(WRAPPER_TAGS) + r")>")


def compute_fingerprint(content: str) -> str:
    """First 16 hex characters of the SHA-256 of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def inject_restoration_notice(content: str, notice: Event) -> str:
    """Insert a notice block right after the wrapper open tag."""
    match = _WRAPPER_OPEN.search(content)
    if not match:
        return f"{notice.raw}\n\n{content}"
    pos = match.end()
    return f"{content[:pos]}\n{notice.raw}\n{content[pos:]}"


class LongTermPersistence:
    """Archive and restore session contexts with tiered compression."""

    def __init__(
        self,
        token_counter: TokenCounter,
        pruner: ContextPruner,
        config: PersistenceConfig | None = None,
        store: ArchiveStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize persistence.

        Args:
            token_counter: Counter for original/compressed token counts
            pruner: Pruner that realizes each tier's target ratio
            config: Persistence configuration (defaults when omitted)
            store: Archive store; created under `config.archive_dir` when omitted
            clock: Source of "now" for idle ages and timestamps
        """
        self.token_counter = token_counter
        self.pruner = pruner
        self.config = config or PersistenceConfig()
        self.store = store or ArchiveStore(
            self.config.archive_dir, lock_timeout=self.config.lock_timeout_seconds
        )
        self.clock = clock

    def select_level(self, idle_seconds: float) -> ArchiveLevel:
        return ArchiveLevel.for_idle_age(idle_seconds)

    async def _compress(self, content: str, level: ArchiveLevel) -> str:
        target_reduction = 1.0 - level.target_ratio
        if level.target_ratio >= SMART_PRUNE_MIN_RATIO:
            return await self.pruner.smart_prune(content, target_reduction)
        return await self.pruner.emergency_prune(content, target_reduction)

    @staticmethod
    def _coerce_session(
        context_id: str,
        session_data: SessionContext | dict[str, Any],
        scope: ContextScope,
    ) -> SessionContext:
        if isinstance(session_data, SessionContext):
            return session_data
        data = dict(session_data)
        data.setdefault("session_id", context_id)
        data["scope"] = scope
        return SessionContext.model_validate(data)

    async def archive_context(
        self,
        context_id: str,
        session_data: SessionContext | dict[str, Any],
        scope: ContextScope | str = ContextScope.SESSION,
    ) -> ArchiveRecord:
        """Compress and persist a session under its idle-age tier.

        Args:
            context_id: Archive key
            session_data: Session record, or a dict of SessionContext fields
            scope: "session" or "project"

        Returns:
            The stored archive record

        Raises:
            InvalidScopeError: If scope is unknown
        """
        scope = ContextScope.parse(scope)
        session = self._coerce_session(context_id, session_data, scope)
        content = session.content

        now = self.clock()
        age_seconds = max(0.0, session.idle_seconds(now))
        level = self.select_level(age_seconds)
        compressed = await self._compress(content, level)

        original_size = len(content.encode("utf-8"))
        compressed_size = len(compressed.encode("utf-8"))
        original_tokens = (await self.token_counter.count(content)).tokens
        compressed_tokens = (await self.token_counter.count(compressed)).tokens

        record = ArchiveRecord(
            context_id=context_id,
            scope=scope,
            archive_level=level,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=compressed_size / original_size if original_size else 1.0,
            fingerprint=compute_fingerprint(compressed),
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
            archived_at=now,
            last_activity=session.last_activity,
            age_seconds=age_seconds,
            context_metadata=SessionSnapshot(
                scope=scope,
                events_count=session.events_count,
                stack_depth=session.stack_depth,
                current_task=session.current_task,
                created=session.created,
            ),
        )

        async with self.store.lock(context_id):
            previous = await self.store.read_metadata(context_id)
            await self.store.write(record, compressed)
            if previous is not None and previous.scope != scope:
                await self.store.delete_content(context_id, previous.scope)

        logger.info(
            "Context archived",
            extra={
                "context_id": context_id,
                "scope": scope.value,
                "archive_level": level.value,
                "original_size": original_size,
                "compressed_size": compressed_size,
                "compression_ratio": round(record.compression_ratio, 4),
            },
        )
        return record

    async def restore_context(
        self,
        context_id: str,
        scope: ContextScope | str = ContextScope.SESSION,
    ) -> RestoreResult:
        """Load an archived context.

        Raises:
            InvalidScopeError: If scope is unknown
            ArchiveNotFoundError: If nothing is archived under context_id
            ScopeMismatchError: If the archive was stored under another scope
        """
        started = time.perf_counter()
        scope = ContextScope.parse(scope)

        metadata = await self.store.read_metadata(context_id)
        if metadata is None:
            raise ArchiveNotFoundError(context_id)
        if metadata.context_id != context_id:
            raise ArchiveNotFoundError(
                context_id, reason=f"metadata belongs to {metadata.context_id!r}"
            )
        if metadata.scope != scope:
            raise ScopeMismatchError(context_id, scope.value, metadata.scope.value)

        try:
            content = await self.store.read_content(context_id, scope)
        except FileNotFoundError:
            raise ArchiveNotFoundError(context_id, reason="content file missing")

        integrity_verified = compute_fingerprint(content) == metadata.fingerprint
        if not integrity_verified:
            logger.warning(
                "Context fingerprint mismatch, possible corruption",
                extra={"context_id": context_id, "expected": metadata.fingerprint},
            )

        now = self.clock()
        time_gap = max(0.0, (now - metadata.last_activity).total_seconds())
        summary = self._restoration_summary(metadata, content, time_gap)

        if time_gap > self.config.time_gap_notice_days * DAY_SECONDS:
            notice = Event.synthesize(
                "context_restoration",
                {
                    "time_gap_days": int(time_gap // DAY_SECONDS),
                    "archive_level": metadata.archive_level.value,
                    "compression_applied": summary["compression_applied"],
                    "original_task": summary["original_task"],
                    "message": summary["message"],
                },
                timestamp=now,
            )
            content = inject_restoration_notice(content, notice)

        restore_ms = (time.perf_counter() - started) * 1000
        performance_met = restore_ms <= self.config.restore_budget_ms
        if not performance_met:
            logger.warning(
                "Context restore exceeded budget",
                extra={
                    "context_id": context_id,
                    "restore_time_ms": restore_ms,
                    "budget_ms": self.config.restore_budget_ms,
                },
            )

        logger.info(
            "Context restored",
            extra={
                "context_id": context_id,
                "scope": scope.value,
                "archive_level": metadata.archive_level.value,
                "time_gap_seconds": time_gap,
                "restore_time_ms": round(restore_ms, 2),
                "integrity_verified": integrity_verified,
            },
        )
        return RestoreResult(
            context_id=context_id,
            scope=scope,
            content=content,
            metadata=metadata,
            time_gap_seconds=time_gap,
            restore_time_ms=restore_ms,
            performance_met=performance_met,
            integrity_verified=integrity_verified,
            restoration_summary=summary,
        )

    def _restoration_summary(
        self,
        metadata: ArchiveRecord,
        content: str,
        time_gap: float,
    ) -> dict[str, Any]:
        days = int(time_gap // DAY_SECONDS)
        task = metadata.context_metadata.current_task
        compression = f"{max(0.0, 1.0 - metadata.compression_ratio) * 100:.0f}%"

        recommendations = []
        if days > 30:
            recommendations.append("Context is over a month old, review the current project state")
        elif days > 7:
            recommendations.append("Context is over a week old, check for changes made since")
        if metadata.archive_level in (ArchiveLevel.SLEEPING, ArchiveLevel.DEEP_SLEEP):
            recommendations.append("Context was heavily compressed, some details may be missing")
        if not task:
            recommendations.append("No current task recorded, re-establish the task before continuing")

        return {
            "message": (
                f"Context restored after {days} days from {metadata.archive_level.value} archive, "
                "content may be summarized"
            ),
            "time_gap_days": days,
            "archive_level": metadata.archive_level.value,
            "compression_applied": compression,
            "original_task": task or "unknown",
            "events_preserved": len(parse_event_log(content).events),
            "recommendations": recommendations,
        }

    async def get_metadata(self, context_id: str) -> ArchiveRecord | None:
        return await self.store.read_metadata(context_id)

    async def list_archives(self, scope: ContextScope | str | None = None) -> list[ArchiveRecord]:
        """Archive records, optionally filtered by scope."""
        records = await self.store.list_records()
        if scope is None:
            return records
        wanted = ContextScope.parse(scope)
        return [r for r in records if r.scope == wanted]

    def retention_days(self, scope: ContextScope) -> int:
        return self.config.scopes[scope.value].retention_days

    async def cleanup_expired_contexts(self, retention_days: int | None = None) -> CleanupReport:
        """Delete Deep-Sleep archives older than the retention window.

        Archives in any other tier are never deleted. Without an explicit
        window each scope's configured retention applies.
        """
        report = CleanupReport()
        now = self.clock()

        for record in await self.store.list_records():
            if record.archive_level is not ArchiveLevel.DEEP_SLEEP:
                continue
            days = retention_days if retention_days is not None else self.retention_days(record.scope)
            if record.archived_at >= now - timedelta(days=days):
                continue
            try:
                async with self.store.lock(record.context_id):
                    freed = await self.store.delete(record.context_id, record.scope)
                report.count += 1
                report.freed_bytes += freed
            except Exception as e:
                logger.error(
                    "Failed to delete expired archive",
                    extra={"context_id": record.context_id, "error": str(e)},
                )
                report.errors.append(f"{record.context_id}: {e}")

        logger.info(
            "Expired archive cleanup completed",
            extra={
                "deleted": report.count,
                "freed_bytes": report.freed_bytes,
                "errors": len(report.errors),
            },
        )
        return report

    async def get_archive_statistics(self) -> dict[str, Any]:
        records = await self.store.list_records()
        stats: dict[str, Any] = {
            "total_archives": len(records),
            "by_scope": {scope.value: 0 for scope in ContextScope},
            "by_level": {level.value: 0 for level in ArchiveLevel},
            "total_original_bytes": 0,
            "total_compressed_bytes": 0,
            "average_compression_ratio": 0.0,
            "oldest_archive": None,
            "newest_archive": None,
        }
        if not records:
            return stats

        for record in records:
            stats["by_scope"][record.scope.value] += 1
            stats["by_level"][record.archive_level.value] += 1
            stats["total_original_bytes"] += record.original_size
            stats["total_compressed_bytes"] += record.compressed_size

        stats["average_compression_ratio"] = sum(r.compression_ratio for r in records) / len(records)
        ordered = sorted(records, key=lambda r: r.archived_at)
        stats["oldest_archive"] = ordered[0].archived_at.isoformat()
        stats["newest_archive"] = ordered[-1].archived_at.isoformat()
        return stats
