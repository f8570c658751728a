"""Threshold-based context window monitoring with trend prediction.

One monitor watches one session. Each check counts tokens, classifies the
usage level, appends to a bounded history and compares with the previous
level; level changes are emitted on the EventBus. Crossing into the
emergency level triggers pruning inline when auto-compaction is enabled.
"""

import asyncio
import inspect
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from ...config.models import MonitorConfig
from ...models.events import Event, EventLog, utc_now
from ...models.monitor import (
    MonitorState,
    TrendDirection,
    TrendReport,
    UsageLevel,
    UsageSample,
)
from ...utils.errors import ConfigError
from ...utils.logger import bind_session_id, get_logger, reset_session_id
from ..compression.event_log import parse_event_log
from ..compression.pruner import ContextPruner
from ..compression.token_counter import TokenCounter
from ..events import EventBus

logger = get_logger(__name__)

# Trend slope breakpoints in percentage points per second
SLOPE_RAPID = 0.05
SLOPE_GROWING = 0.01
SLOPE_SHRINKING = -0.01


class ContextSource(Protocol):
    """Producer of the current serialized log.

    `get_current_context` may be sync or async. An optional
    `update_context(content)` (sync or async) receives pruned content.
    """

    def get_current_context(self) -> Any:
        ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def basic_truncate(content: str) -> str:
    """Keep roughly the last half of a log, realigned to whole blocks.

    Used when no pruner is available. The result starts with a
    `context_truncated` marker block.
    """
    log = parse_event_log(content)

    if not log.events:
        cut = len(content) // 2
        boundary = content.find("<", cut)
        tail = content[boundary:] if boundary != -1 else content[cut:]
        tail = tail.replace(f"</{log.wrapper}>", "").strip()
        marker = Event.synthesize(
            "context_truncated",
            {"reason": "emergency_basic_truncation", "original_length": len(content)},
        )
        return f"<{log.wrapper}>\n{marker.raw}\n\n{tail}\n</{log.wrapper}>"

    half = sum(len(e.raw) for e in log.events) / 2
    kept: list[Event] = []
    size = 0
    for event in reversed(log.events):
        if kept and size >= half:
            break
        kept.append(event)
        size += len(event.raw)
    kept.reverse()

    marker = Event.synthesize(
        "context_truncated",
        {
            "reason": "emergency_basic_truncation",
            "original_length": len(content),
            "events_removed": len(log.events) - len(kept),
        },
    )
    return EventLog(events=[marker] + kept, wrapper=log.wrapper).serialize()


class ContextWindowMonitor:
    """Usage monitor for one session's context window."""

    def __init__(
        self,
        session_id: str,
        token_counter: TokenCounter,
        pruner: ContextPruner | None = None,
        event_bus: EventBus | None = None,
        config: MonitorConfig | None = None,
        profile: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize monitor.

        Args:
            session_id: Monitored session
            token_counter: Counter providing tokens and the context limit
            pruner: Pruner used on emergency; basic truncation when None
            event_bus: Sink for threshold and lifecycle events
            config: Monitor configuration (defaults when omitted)
            profile: Model profile for the context limit
            clock: Source of "now" for samples and trends
        """
        self.session_id = session_id
        self.token_counter = token_counter
        self.pruner = pruner
        self.event_bus = event_bus or EventBus()
        self.config = config or MonitorConfig()
        self.profile = profile
        self.clock = clock

        self.state = MonitorState()
        self.history: deque[UsageSample] = deque(maxlen=self.config.max_history)
        self.last_compacted_content: str | None = None

        self._lock = asyncio.Lock()
        self._source: ContextSource | None = None
        self._task: asyncio.Task | None = None
        self._recheck_tasks: set[asyncio.Task] = set()
        self._monitoring = False
        self._interval = self.config.interval_seconds
        self._next_check: datetime | None = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def thresholds(self) -> dict[str, float]:
        return {
            UsageLevel.WARNING.value: self.config.warning_threshold,
            UsageLevel.CRITICAL.value: self.config.critical_threshold,
            UsageLevel.EMERGENCY.value: self.config.emergency_threshold,
        }

    def _emit(self, event_name: str, payload: dict[str, Any] | None = None) -> None:
        data = {"session_id": self.session_id}
        data.update(payload or {})
        self.event_bus.emit(event_name, data)

    def classify(self, percentage: float) -> UsageLevel:
        """Map a usage percentage to a level against the ordered thresholds."""
        if percentage >= self.config.emergency_threshold:
            return UsageLevel.EMERGENCY
        if percentage >= self.config.critical_threshold:
            return UsageLevel.CRITICAL
        if percentage >= self.config.warning_threshold:
            return UsageLevel.WARNING
        return UsageLevel.SAFE

    async def start_monitoring(self, source: ContextSource, interval: float | None = None) -> None:
        """Begin polling `source` every `interval` seconds."""
        if self._monitoring:
            logger.warning("Monitoring already active", extra={"session_id": self.session_id})
            return

        self._source = source
        self._interval = interval or self.config.interval_seconds
        self._monitoring = True
        self._task = asyncio.create_task(self._poll_loop())

        logger.info(
            "Context monitoring started",
            extra={"session_id": self.session_id, "interval_seconds": self._interval},
        )
        self._emit(
            "monitoring_started",
            {"interval_seconds": self._interval, "thresholds": self.thresholds},
        )

    async def stop_monitoring(self) -> None:
        """Stop polling. Calling it again is a no-op."""
        if not self._monitoring:
            return
        self._monitoring = False

        tasks = [t for t in [self._task, *self._recheck_tasks] if t is not None]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._recheck_tasks.clear()
        self._next_check = None

        logger.info(
            "Context monitoring stopped",
            extra={"session_id": self.session_id, "final_level": self.state.level.value},
        )
        self._emit("monitoring_stopped", {"final_state": self.state.to_dict()})

    async def _poll_loop(self) -> None:
        token = bind_session_id(self.session_id)
        try:
            while self._monitoring:
                await self._poll_once()
                self._next_check = self.clock() + timedelta(seconds=self._interval)
                await asyncio.sleep(self._interval)
        finally:
            reset_session_id(token)

    async def _poll_once(self) -> MonitorState | None:
        if self._source is None:
            return None
        try:
            content = await _maybe_await(self._source.get_current_context())
        except Exception as e:
            logger.warning(
                "Context source read failed",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            self._emit("monitor_error", {"stage": "read", "error": str(e)})
            return None

        try:
            return await self.check_context_usage(content)
        except Exception as e:
            logger.error(
                "Context usage check failed",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            self._emit("monitor_error", {"stage": "check", "error": str(e)})
            return None

    async def force_check(self, content: str | None = None) -> MonitorState | None:
        """Check now, using `content` or a fresh read from the source."""
        if content is not None:
            return await self.check_context_usage(content)
        return await self._poll_once()

    async def check_context_usage(self, content: str) -> MonitorState:
        """Measure content and emit events for any level change.

        Checks for the same session never interleave.
        """
        async with self._lock:
            tokens = (await self.token_counter.count(content)).tokens
            limit = self.token_counter.get_context_limit(self.profile)
            percentage = (tokens / limit) * 100 if limit > 0 else 100.0
            level = self.classify(percentage)
            now = self.clock()

            previous = self.state.level
            previous_sample = self.history[-1] if self.history else None

            self.history.append(
                UsageSample(timestamp=now, tokens=tokens, percentage=percentage, level=level)
            )
            self.state = MonitorState(
                tokens=tokens, percentage=percentage, level=level, last_check=now
            )

            self._emit(
                "context_updated",
                {"tokens": tokens, "percentage": percentage, "level": level.value, "limit": limit},
            )

            if previous_sample is not None:
                growth = percentage - previous_sample.percentage
                if growth > self.config.rapid_growth_percent:
                    logger.warning(
                        "Rapid context growth",
                        extra={"session_id": self.session_id, "growth_percent": growth},
                    )
                    self._emit(
                        "rapid_growth",
                        {"growth_percent": growth, "percentage": percentage, "tokens": tokens},
                    )

            if level != previous:
                self._emit_transition(previous, level, tokens, percentage, limit)
                if level is UsageLevel.EMERGENCY and self.config.auto_compact:
                    await self._handle_emergency(content, tokens, percentage)

            return self.state

    def _emit_transition(
        self,
        previous: UsageLevel,
        level: UsageLevel,
        tokens: int,
        percentage: float,
        limit: int,
    ) -> None:
        if level.rank > previous.rank:
            # Rising: report every level crossed, in order
            crossed = [lvl for lvl in UsageLevel if previous.rank < lvl.rank <= level.rank]
        else:
            crossed = [level]

        for lvl in crossed:
            payload = {
                "level": lvl.value,
                "previous_level": previous.value,
                "tokens": tokens,
                "percentage": percentage,
                "limit": limit,
            }
            if lvl is not UsageLevel.SAFE:
                payload["threshold"] = self.thresholds[lvl.value]
            log = logger.info if lvl in (UsageLevel.SAFE, UsageLevel.WARNING) else logger.warning
            log(
                "Context usage level changed",
                extra={"session_id": self.session_id, "level": lvl.value, "percentage": percentage},
            )
            self._emit(f"threshold_{lvl.value}", payload)

    async def _handle_emergency(self, content: str, tokens: int, percentage: float) -> None:
        self._emit("emergency_compact_triggered", {"tokens": tokens, "percentage": percentage})
        try:
            if self.pruner is not None:
                pruned = await self.pruner.emergency_prune(
                    content, self.config.emergency_target_reduction
                )
                method = "pruner"
            else:
                pruned = basic_truncate(content)
                method = "basic_truncate"

            if self._source is not None and hasattr(self._source, "update_context"):
                await _maybe_await(self._source.update_context(pruned))
        except Exception as e:
            logger.error(
                "Emergency compaction failed",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            self._emit("emergency_compact_failed", {"error": str(e)})
            return

        self.last_compacted_content = pruned
        new_tokens = self.token_counter.estimate(pruned)
        logger.info(
            "Emergency compaction completed",
            extra={
                "session_id": self.session_id,
                "method": method,
                "original_tokens": tokens,
                "new_tokens_estimate": new_tokens,
            },
        )
        self._emit(
            "emergency_compact_completed",
            {"method": method, "original_tokens": tokens, "new_tokens_estimate": new_tokens},
        )
        self._schedule_recheck(pruned)

    def _schedule_recheck(self, pruned: str) -> None:
        async def recheck() -> None:
            await asyncio.sleep(self.config.recheck_delay_seconds)
            if self._source is not None and self._monitoring:
                await self._poll_once()
            else:
                try:
                    await self.check_context_usage(pruned)
                except Exception as e:
                    logger.error(
                        "Post-compaction check failed",
                        extra={"session_id": self.session_id, "error": str(e)},
                    )
                    self._emit("monitor_error", {"stage": "recheck", "error": str(e)})

        task = asyncio.create_task(recheck())
        self._recheck_tasks.add(task)
        task.add_done_callback(self._recheck_tasks.discard)

    async def wait_for_rechecks(self) -> None:
        """Wait until scheduled post-compaction checks have run."""
        while self._recheck_tasks:
            await asyncio.gather(*list(self._recheck_tasks), return_exceptions=True)

    def get_trends(self, window_minutes: float | None = None) -> TrendReport:
        """Slope of usage over the recent window and ETAs to uncrossed thresholds."""
        window = timedelta(minutes=window_minutes or self.config.trend_window_minutes)
        cutoff = self.clock() - window
        samples = [s for s in self.history if s.timestamp >= cutoff]
        if len(samples) < 2:
            return TrendReport(samples=len(samples))

        first, last = samples[0], samples[-1]
        elapsed = (last.timestamp - first.timestamp).total_seconds()
        slope = (last.percentage - first.percentage) / elapsed if elapsed > 0 else 0.0

        if slope > SLOPE_RAPID:
            trend = TrendDirection.RAPID_GROWTH
        elif slope > SLOPE_GROWING:
            trend = TrendDirection.GROWING
        elif slope < SLOPE_SHRINKING:
            trend = TrendDirection.SHRINKING
        else:
            trend = TrendDirection.STABLE

        predictions: dict[str, float] = {}
        if slope > 0:
            for name, threshold in self.thresholds.items():
                if last.percentage < threshold:
                    predictions[name] = (threshold - last.percentage) / slope

        return TrendReport(trend=trend, slope=slope, samples=len(samples), predictions=predictions)

    def update_thresholds(
        self,
        warning: float | None = None,
        critical: float | None = None,
        emergency: float | None = None,
    ) -> dict[str, float]:
        """Replace one or more thresholds, keeping them strictly ascending.

        Raises:
            ConfigError: If the resulting thresholds are invalid
        """
        updates = {}
        if warning is not None:
            updates["warning_threshold"] = warning
        if critical is not None:
            updates["critical_threshold"] = critical
        if emergency is not None:
            updates["emergency_threshold"] = emergency

        try:
            self.config = MonitorConfig.model_validate({**self.config.model_dump(), **updates})
        except ValueError as e:
            raise ConfigError(f"Invalid monitor thresholds: {e}", details=updates)

        logger.info(
            "Monitor thresholds updated",
            extra={"session_id": self.session_id, "thresholds": self.thresholds},
        )
        self._emit("thresholds_updated", {"thresholds": self.thresholds})
        return self.thresholds

    def get_status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "is_monitoring": self._monitoring,
            "state": self.state.to_dict(),
            "thresholds": self.thresholds,
            "trends": self.get_trends().to_dict(),
            "auto_compact": self.config.auto_compact,
            "history_size": len(self.history),
            "next_check": self._next_check.isoformat() if self._next_check else None,
        }
