"""Layered pruning of session event logs.

Strategies, applied in this order:
1. Remove resolved events past a short grace window
2. Compact old events into one summary per contiguous run
3. Consolidate similar events (grouped prefix key, then adjacent similarity)
4. Summarize everything but the most recent events

Smart mode runs 1-3 and re-measures after each, summarizing only when the
target is still unmet. Emergency mode removes resolved events, truncates to
the most recent events, consolidates, then summarizes if still oversized.

Every mode ends with the integrity floor: a result smaller than
max(floor_min_tokens, floor_ratio * original) is discarded in favour of the
whitespace-normalized original.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ...config.models import PrunerConfig
from ...models.events import Event, EventLog, format_timestamp, utc_now
from ...utils.logger import get_logger
from .event_log import normalize_whitespace, parse_event_log
from .heuristics import is_essential_event
from .similarity import is_similar, strip_timestamps
from .token_counter import TokenCounter

logger = get_logger(__name__)

MODE_SMART = "smart"
MODE_EMERGENCY = "emergency"


@dataclass
class PruneResult:
    """Result of one pruning pass."""

    content: str
    mode: str
    original_tokens: int
    final_tokens: int
    original_events: int
    final_events: int
    strategies_applied: list[str] = field(default_factory=list)
    floor_applied: bool = False

    @property
    def reduction(self) -> float:
        """Achieved reduction as a fraction of the original token count."""
        if self.original_tokens == 0:
            return 0.0
        return 1.0 - self.final_tokens / self.original_tokens


def _time_span(events: list[Event]) -> str:
    first = min(e.timestamp for e in events)
    last = max(e.timestamp for e in events)
    return f"{format_timestamp(first)} to {format_timestamp(last)}"


def _type_counts(events: list[Event]) -> list[str]:
    counts = Counter(e.type for e in events)
    return [f"{event_type}: {count}" for event_type, count in sorted(counts.items())]


def _raw_length(events: list[Event]) -> int:
    # Blocks are joined by a blank line when serialized
    return sum(len(e.raw) for e in events) + 2 * max(0, len(events) - 1)


def _sample(content: str, limit: int = 100) -> str:
    text = " ".join(strip_timestamps(content).split())
    text = text.replace('"', "'")
    return text[:limit]


class ContextPruner:
    """Reduce serialized event logs while keeping them well formed."""

    def __init__(
        self,
        token_counter: TokenCounter,
        config: PrunerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize pruner.

        Args:
            token_counter: Counter used to measure progress toward the target
            config: Pruner configuration (defaults when omitted)
            clock: Source of "now" for event ages
        """
        self.token_counter = token_counter
        self.config = config or PrunerConfig()
        self.clock = clock

    async def smart_prune(self, content: str, target_reduction: float = 0.3) -> str:
        """Gently reduce a log by `target_reduction` of its tokens."""
        result = await self.prune_with_report(content, target_reduction, MODE_SMART)
        return result.content

    async def emergency_prune(self, content: str, target_reduction: float = 0.5) -> str:
        """Aggressively reduce a log that is about to hit the context limit."""
        result = await self.prune_with_report(content, target_reduction, MODE_EMERGENCY)
        return result.content

    async def prune_with_report(
        self,
        content: str,
        target_reduction: float = 0.3,
        mode: str = MODE_SMART,
    ) -> PruneResult:
        """Prune a log and report what was done.

        Args:
            content: Serialized event log
            target_reduction: Fraction of tokens to remove, in [0, 1)
            mode: "smart" or "emergency"

        Returns:
            PruneResult whose content is always a well-formed log
        """
        target_reduction = min(max(target_reduction, 0.0), 0.99)
        log = parse_event_log(content)
        original_tokens = (await self.token_counter.count(content)).tokens

        if not log.events:
            return PruneResult(
                content=content,
                mode=mode,
                original_tokens=original_tokens,
                final_tokens=original_tokens,
                original_events=0,
                final_events=0,
            )

        protected = self._protected_ids(log.events)
        target_tokens = original_tokens * (1 - target_reduction)

        if mode == MODE_EMERGENCY:
            events, applied = await self._run_emergency(log, protected, target_reduction, target_tokens)
        else:
            events, applied = await self._run_smart(log, protected, target_reduction, target_tokens)

        pruned = log.with_events(events).serialize()
        final_tokens = (await self.token_counter.count(pruned)).tokens

        result = PruneResult(
            content=pruned,
            mode=mode,
            original_tokens=original_tokens,
            final_tokens=final_tokens,
            original_events=len(log.events),
            final_events=len(events),
            strategies_applied=applied,
        )

        floor = max(
            self.config.floor_min_tokens,
            math.ceil(self.config.floor_ratio * original_tokens),
        )
        if final_tokens < floor:
            logger.warning(
                "Prune result below integrity floor, keeping original",
                extra={
                    "mode": mode,
                    "final_tokens": final_tokens,
                    "floor_tokens": floor,
                    "original_tokens": original_tokens,
                },
            )
            result = await self._conservative(content, result)
            result.floor_applied = True
        elif final_tokens > original_tokens:
            result = await self._conservative(content, result)

        logger.info(
            "Context pruned",
            extra={
                "mode": mode,
                "original_tokens": result.original_tokens,
                "final_tokens": result.final_tokens,
                "reduction": round(result.reduction, 4),
                "target_reduction": target_reduction,
                "strategies": result.strategies_applied,
                "floor_applied": result.floor_applied,
            },
        )
        return result

    async def _conservative(self, content: str, result: PruneResult) -> PruneResult:
        normalized = normalize_whitespace(content)
        if len(normalized) > len(content):
            normalized = content
        result.content = normalized
        result.final_tokens = (await self.token_counter.count(normalized)).tokens
        result.final_events = result.original_events
        result.strategies_applied = ["normalize_whitespace"]
        return result

    async def _measure(self, log: EventLog, events: list[Event]) -> int:
        return (await self.token_counter.count(log.with_events(events).serialize())).tokens

    async def _run_smart(
        self,
        log: EventLog,
        protected: set[int],
        target_reduction: float,
        target_tokens: float,
    ) -> tuple[list[Event], list[str]]:
        now = self.clock()
        events = list(log.events)
        applied: list[str] = []
        strategies = [
            ("remove_resolved", self.remove_resolved),
            ("compact_old", self.compact_old),
            ("consolidate_similar", self.consolidate_similar),
        ]

        for name, strategy in strategies:
            reduced = strategy(events, protected, now)
            if len(reduced) != len(events):
                applied.append(name)
                logger.debug(
                    "Prune strategy applied",
                    extra={"strategy": name, "before": len(events), "after": len(reduced)},
                )
            events = reduced
            if await self._measure(log, events) <= target_tokens:
                return events, applied

        summarized = self.summarize(events, protected, target_reduction)
        if len(summarized) != len(events):
            applied.append("summarize")
        return summarized, applied

    async def _run_emergency(
        self,
        log: EventLog,
        protected: set[int],
        target_reduction: float,
        target_tokens: float,
    ) -> tuple[list[Event], list[str]]:
        now = self.clock()
        applied: list[str] = []
        events = self.remove_resolved(list(log.events), protected, now)
        if len(events) != len(log.events):
            applied.append("remove_resolved")

        keep = max(
            self.config.emergency_min_keep,
            math.floor(self.config.emergency_keep_ratio * len(log.events)),
        )
        if len(events) > keep:
            events = events[-keep:]
            applied.append("truncate")

        consolidated = self.consolidate_similar(events, protected, now)
        if len(consolidated) != len(events):
            applied.append("consolidate_similar")
        events = consolidated

        if await self._measure(log, events) > target_tokens:
            summarized = self.summarize(events, protected, target_reduction)
            if len(summarized) != len(events):
                applied.append("summarize")
            events = summarized

        return events, applied

    def _protected_ids(self, events: list[Event]) -> set[int]:
        total = len(events)
        return {
            id(event)
            for index, event in enumerate(events)
            if is_essential_event(
                event,
                self.config.essential_types,
                index=index,
                total=total,
                preserve_recent=self.config.preserve_recent,
            )
        }

    def remove_resolved(
        self,
        events: list[Event],
        protected: set[int],
        now: datetime,
    ) -> list[Event]:
        """Drop non-essential resolved events older than the grace window."""
        grace = self.config.resolved_grace_seconds
        return [
            e for e in events
            if id(e) in protected or not e.resolved or e.age_seconds(now) <= grace
        ]

    def compact_old(
        self,
        events: list[Event],
        protected: set[int],
        now: datetime,
    ) -> list[Event]:
        """Collapse each contiguous run of old non-essential events into a summary.

        Essential events break runs and stay in place. A run is only replaced
        when the summary is shorter than the events it covers.
        """
        threshold = self.config.compact_age_seconds
        result: list[Event] = []
        run: list[Event] = []

        def flush() -> None:
            if len(run) > 1:
                summary = Event.synthesize(
                    "context_summary",
                    {"events_compacted": len(run), "time_span": _time_span(run)},
                    lines=_type_counts(run),
                    timestamp=max(e.timestamp for e in run),
                )
                if len(summary.raw) < _raw_length(run):
                    result.append(summary)
                    run.clear()
                    return
            result.extend(run)
            run.clear()

        for event in events:
            if id(event) not in protected and event.age_seconds(now) > threshold:
                run.append(event)
            else:
                flush()
                result.append(event)
        flush()
        return result

    def consolidate_similar(
        self,
        events: list[Event],
        protected: set[int],
        now: datetime,
    ) -> list[Event]:
        """Merge duplicate-looking events.

        First pass groups non-essential events by type and a timestamp-free
        content prefix; each group of two or more becomes one `<type>_summary`
        at the position of its first member. Second pass merges adjacent
        same-type events whose normalized edit-distance similarity exceeds the
        configured threshold into `<type>_compacted`.
        """
        grouped = self._group_by_prefix(events, protected)
        return self._merge_adjacent(grouped, protected)

    def _group_key(self, event: Event) -> tuple[str, str]:
        prefix = " ".join(strip_timestamps(event.content).split())
        return event.type, prefix[: self.config.group_key_length]

    def _group_by_prefix(self, events: list[Event], protected: set[int]) -> list[Event]:
        groups: dict[tuple[str, str], list[Event]] = {}
        for event in events:
            if id(event) not in protected:
                groups.setdefault(self._group_key(event), []).append(event)

        summaries: dict[int, Event] = {}
        dropped: set[int] = set()
        for (event_type, _), members in groups.items():
            if len(members) < 2:
                continue
            summary = Event.synthesize(
                f"{event_type}_summary",
                {
                    "similar_events": len(members),
                    "first_occurrence": format_timestamp(min(e.timestamp for e in members)),
                    "last_occurrence": format_timestamp(max(e.timestamp for e in members)),
                },
                lines=[f'sample: "{_sample(members[0].content)}"'],
                timestamp=max(e.timestamp for e in members),
            )
            if len(summary.raw) >= _raw_length(members):
                continue
            summaries[id(members[0])] = summary
            dropped.update(id(e) for e in members[1:])

        result = []
        for event in events:
            if id(event) in summaries:
                result.append(summaries[id(event)])
            elif id(event) not in dropped:
                result.append(event)
        return result

    def _merge_adjacent(self, events: list[Event], protected: set[int]) -> list[Event]:
        threshold = self.config.similarity_threshold
        max_chars = self.config.similarity_max_chars
        result: list[Event] = []
        run: list[Event] = []

        def flush() -> None:
            if len(run) > 1:
                merged = Event.synthesize(
                    f"{run[0].type}_compacted",
                    {"merged_events": len(run), "time_span": _time_span(run)},
                    lines=[f'latest: "{_sample(run[-1].content)}"'],
                    timestamp=max(e.timestamp for e in run),
                )
                if len(merged.raw) < _raw_length(run):
                    result.append(merged)
                    run.clear()
                    return
            result.extend(run)
            run.clear()

        for event in events:
            if id(event) in protected:
                flush()
                result.append(event)
                continue
            if run and (
                event.type != run[-1].type
                or not is_similar(run[-1].content, event.content, threshold, max_chars)
            ):
                flush()
            run.append(event)
        flush()
        return result

    def summarize(
        self,
        events: list[Event],
        protected: set[int],
        target_reduction: float,
    ) -> list[Event]:
        """Keep the most recent events and fold the rest into one summary.

        Essential events from the folded part are kept standalone after the
        summary.
        """
        n = len(events)
        target_count = max(1, math.ceil(n * (1 - target_reduction)))
        keep_recent = math.ceil(target_count * self.config.summary_keep_ratio)
        if keep_recent >= n:
            return events

        # keep_recent >= 1 since target_count >= 1 and summary_keep_ratio > 0
        head, tail = events[:-keep_recent], events[-keep_recent:]
        folded = [e for e in head if id(e) not in protected]
        kept = [e for e in head if id(e) in protected]
        if not folded:
            return events

        summary = Event.synthesize(
            "events_summary",
            {"summarized_events": len(folded), "time_span": _time_span(folded)},
            lines=_type_counts(folded),
            timestamp=max(e.timestamp for e in folded),
        )
        if len(summary.raw) >= _raw_length(folded):
            return events
        return [summary] + kept + tail
