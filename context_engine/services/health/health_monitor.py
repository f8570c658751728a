"""Context health scoring and per-session maintenance.

Maintenance for one session computes its health, appends it to the
session's health log, then archives, alerts or flags it for cleanup. Jobs
for the same session never overlap: a second request while one is running
is reported as skipped.
"""

import asyncio
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ...config.models import HealthConfig
from ...models.archive import DAY_SECONDS, ArchiveRecord
from ...models.events import utc_now
from ...models.health import HealthLevel, HealthRecord, HealthScores, MaintenanceResult
from ...models.session import SessionContext
from ...registry import ContextRegistry
from ...utils.file_utils import async_read_text, async_write_text
from ...utils.logger import bind_session_id, get_logger, reset_session_id
from ..compression.token_counter import TokenCounter
from ..events import EventBus
from ..persistence.archive_store import safe_name
from ..persistence.long_term import LongTermPersistence
from . import scoring

logger = get_logger(__name__)

CLEANUP_FLAG = "marked_for_cleanup"


class ContextHealthMonitor:
    """Weighted health scoring plus maintenance actions for session contexts."""

    def __init__(
        self,
        token_counter: TokenCounter,
        persistence: LongTermPersistence,
        registry: ContextRegistry | None = None,
        event_bus: EventBus | None = None,
        config: HealthConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize health monitor.

        Args:
            token_counter: Counter for the token efficiency sub-score
            persistence: Archive used by the "archive" maintenance action
            registry: Source of sessions for background sweeps
            event_bus: Sink for alerts and maintenance events
            config: Health configuration (defaults when omitted)
            clock: Source of "now" for freshness
        """
        self.token_counter = token_counter
        self.persistence = persistence
        self.registry = registry
        self.event_bus = event_bus or EventBus()
        self.config = config or HealthConfig()
        self.clock = clock

        log_dir = self.config.health_log_dir or Path(persistence.config.archive_dir) / "health-logs"
        self.health_log_dir = Path(log_dir)

        self.running_jobs: set[str] = set()
        self.latest: dict[str, HealthRecord] = {}
        self.cleanup_candidates: set[str] = set()
        self.last_sweep: datetime | None = None

    async def calculate_health_score(
        self,
        context_id: str,
        session_data: SessionContext,
        metadata: ArchiveRecord | None = None,
    ) -> HealthRecord:
        """Score one session; the overall score is always within [0, 1]."""
        now = self.clock()
        content = session_data.content
        idle_days = max(0.0, session_data.idle_seconds(now)) / DAY_SECONDS
        tokens = (await self.token_counter.count(content)).tokens

        scores = HealthScores(
            freshness=scoring.freshness_score(idle_days),
            usage_pattern=scoring.usage_pattern_score(
                session_data.events_count, session_data.stack_depth
            ),
            data_integrity=scoring.data_integrity_score(content, metadata),
            compression_health=scoring.compression_health_score(metadata),
            token_efficiency=scoring.token_efficiency_score(len(content), tokens),
        )
        overall = scoring.overall_score(scores, self.config.weights)
        level = scoring.determine_level(overall, self.config.thresholds)

        record = HealthRecord(
            context_id=context_id,
            timestamp=now,
            overall_score=overall,
            level=level,
            scores=scores,
            recommendations=scoring.generate_recommendations(scores, level),
            tokens=tokens,
        )
        self.latest[context_id] = record
        return record

    def health_log_path(self, context_id: str) -> Path:
        return self.health_log_dir / f"{safe_name(context_id)}-health.json"

    async def get_health_history(self, context_id: str) -> list[dict[str, Any]]:
        """Past health records of a session, oldest first."""
        try:
            raw = await async_read_text(self.health_log_path(context_id))
        except FileNotFoundError:
            return []
        try:
            history = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(
                "Health log unreadable, starting a new one",
                extra={"context_id": context_id, "error": str(e)},
            )
            return []
        return history if isinstance(history, list) else []

    async def log_health_status(self, context_id: str, record: HealthRecord) -> None:
        """Append a record to the session's health log, keeping the newest entries."""
        history = await self.get_health_history(context_id)
        history.append(record.to_dict())
        history = history[-self.config.history_limit:]
        await async_write_text(
            self.health_log_path(context_id),
            json.dumps(history, indent=2, ensure_ascii=False),
        )

    async def perform_maintenance(
        self,
        context_id: str,
        session_data: SessionContext | None = None,
        metadata: ArchiveRecord | None = None,
    ) -> MaintenanceResult:
        """Run one maintenance job.

        Raises:
            SessionNotFoundError: If session_data is omitted and the id is not registered
        """
        if context_id in self.running_jobs:
            logger.info("Maintenance already running, skipped", extra={"context_id": context_id})
            return MaintenanceResult(
                context_id=context_id, success=False, skipped=True, reason="already_running"
            )

        if session_data is None:
            if self.registry is None:
                raise ValueError("session_data is required without a registry")
            session_data = self.registry.get(context_id)
        if metadata is None and self.registry is not None:
            metadata = self.registry.get_archive_record(context_id)

        self.running_jobs.add(context_id)
        token = bind_session_id(context_id)
        started = time.perf_counter()
        try:
            record = await self.calculate_health_score(context_id, session_data, metadata)
            await self.log_health_status(context_id, record)
            actions = await self._execute_actions(context_id, session_data, record, metadata)
            duration_ms = (time.perf_counter() - started) * 1000

            logger.info(
                "Maintenance completed",
                extra={
                    "context_id": context_id,
                    "level": record.level.value,
                    "overall_score": round(record.overall_score, 4),
                    "actions": actions,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            self.event_bus.emit(
                "maintenance_completed",
                {
                    "context_id": context_id,
                    "health_level": record.level.value,
                    "overall_score": record.overall_score,
                    "actions": actions,
                    "duration_ms": duration_ms,
                },
            )
            return MaintenanceResult(
                context_id=context_id,
                success=True,
                health=record,
                actions=actions,
                duration_ms=duration_ms,
            )
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(
                "Maintenance failed",
                extra={"context_id": context_id, "error": str(e), "duration_ms": duration_ms},
            )
            self.event_bus.emit("maintenance_failed", {"context_id": context_id, "error": str(e)})
            return MaintenanceResult(
                context_id=context_id, success=False, error=str(e), duration_ms=duration_ms
            )
        finally:
            self.running_jobs.discard(context_id)
            reset_session_id(token)
            if self.registry is not None:
                self.registry.mark_maintained(context_id, self.clock())

    async def _execute_actions(
        self,
        context_id: str,
        session_data: SessionContext,
        record: HealthRecord,
        metadata: ArchiveRecord | None,
    ) -> list[str]:
        actions: list[str] = []
        scores = record.scores

        if scores.freshness < 0.3 and scores.data_integrity > 0.8 and metadata is None:
            try:
                archived = await self.persistence.archive_context(
                    context_id, session_data, session_data.scope
                )
                actions.append("archived_context")
                if self.registry is not None and context_id in self.registry:
                    self.registry.set_archive_record(context_id, archived)
            except Exception as e:
                logger.error(
                    "Maintenance archive failed",
                    extra={"context_id": context_id, "error": str(e)},
                )
                actions.append(f"archive_failed: {e}")

        if record.level in (HealthLevel.CRITICAL, HealthLevel.FAILING):
            self.event_bus.emit(
                "context_health_alert",
                {
                    "context_id": context_id,
                    "level": record.level.value,
                    "overall_score": record.overall_score,
                    "recommendations": list(record.recommendations),
                },
            )
            actions.append("health_alert_sent")

        if record.level is HealthLevel.FAILING and scores.data_integrity < 0.3:
            self.cleanup_candidates.add(context_id)
            if self.registry is not None and context_id in self.registry:
                self.registry.flag(context_id, CLEANUP_FLAG)
            actions.append(CLEANUP_FLAG)

        return actions

    def is_quiet_hours(self, now: datetime | None = None) -> bool:
        """Whether `now` (local time by default) falls in the quiet window."""
        hour = (now or datetime.now()).hour
        start, end = self.config.quiet_hours_start, self.config.quiet_hours_end
        if start == end:
            return False
        if start < end:
            return start <= hour < end
        return hour >= start or hour < end

    async def run_background_maintenance(self, now: datetime | None = None) -> dict[str, Any]:
        """One sweep over registered sessions, up to the concurrency cap."""
        if self.is_quiet_hours(now):
            logger.info("Maintenance sweep skipped during quiet hours")
            return {"skipped": True, "reason": "quiet_hours", "launched": 0}

        available = self.config.max_concurrent_jobs - len(self.running_jobs)
        if available <= 0:
            logger.info(
                "Maintenance sweep skipped, job limit reached",
                extra={"running_jobs": len(self.running_jobs)},
            )
            return {"skipped": True, "reason": "concurrency_limit", "launched": 0}

        if self.registry is None:
            return {"skipped": True, "reason": "no_registry", "launched": 0}

        candidates = [
            s for s in self.registry.list_for_maintenance() if s.session_id not in self.running_jobs
        ][:available]

        results = await asyncio.gather(
            *(self.perform_maintenance(s.session_id, s) for s in candidates)
        )
        self.last_sweep = self.clock()

        logger.info(
            "Maintenance sweep completed",
            extra={
                "launched": len(candidates),
                "failed": sum(1 for r in results if not r.success and not r.skipped),
            },
        )
        return {
            "skipped": False,
            "launched": len(candidates),
            "results": [r.to_dict() for r in results],
        }

    def get_health_summary(self, maintenance_running: bool = False) -> dict[str, Any]:
        """Aggregate the latest record of every tracked session."""
        if self.registry is not None:
            ids = [s.session_id for s in self.registry.list_sessions()]
            records = [self.latest[i] for i in ids if i in self.latest]
        else:
            records = list(self.latest.values())

        by_level = {level.value: 0 for level in HealthLevel}
        for record in records:
            by_level[record.level.value] += 1

        return {
            "total_contexts": len(records),
            "by_level": by_level,
            "average_score": (
                sum(r.overall_score for r in records) / len(records) if records else 0.0
            ),
            "maintenance_running": maintenance_running,
            "active_jobs": len(self.running_jobs),
            "cleanup_candidates": sorted(self.cleanup_candidates),
            "last_sweep": self.last_sweep.isoformat() if self.last_sweep else None,
        }
