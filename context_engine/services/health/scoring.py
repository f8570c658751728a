"""Health sub-scores of a session context.

Every sub-score is in [0, 1]. The overall score is their weighted sum with
weights from HealthConfig.
"""

from ...config.models import HealthThresholds, HealthWeights
from ...models.archive import ArchiveRecord
from ...models.health import HealthLevel, HealthScores
from ..compression.heuristics import (
    count_semantic_markers,
    detect_corruption_indicators,
    structure_markers,
)
from ..persistence.long_term import compute_fingerprint

IDEAL_CHARS_PER_TOKEN = 3.5

RECOMMENDATION_TRIGGERS: list[tuple[str, float, str]] = [
    ("freshness", 0.5, "Context is stale, consider archiving or refreshing"),
    ("data_integrity", 0.7, "Data integrity issues detected, manual review recommended"),
    ("compression_health", 0.6, "Compression efficiency is poor, context may need reprocessing"),
    ("token_efficiency", 0.5, "Token usage is inefficient, context pruning recommended"),
    ("usage_pattern", 0.4, "Irregular usage pattern, context may benefit from restructuring"),
]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def freshness_score(idle_days: float) -> float:
    """Piecewise linear decay of idle age in days."""
    if idle_days <= 1:
        return 1.0
    if idle_days <= 7:
        return 0.8 - (idle_days - 1) * 0.3 / 6
    if idle_days <= 30:
        return 0.5 - (idle_days - 7) * 0.4 / 23
    if idle_days <= 90:
        return 0.1 - (idle_days - 30) * 0.09 / 60
    return 0.01


def usage_pattern_score(events_count: int, stack_depth: int) -> float:
    score = min(events_count / 50, 1.0)
    if 0 < stack_depth <= 3:
        score += 0.2
    elif stack_depth > 3:
        score -= 0.1
    return _clamp(score)


def data_integrity_score(content: str, metadata: ArchiveRecord | None = None) -> float:
    """Structural and corruption checks on serialized content, floored at 0.1."""
    if not content or len(content) < 10:
        return 0.1

    score = 1.0
    has_open, has_close = structure_markers(content)
    if not has_open and not has_close:
        score -= 0.4
    elif not has_open or not has_close:
        score -= 0.2

    score -= 0.08 * len(detect_corruption_indicators(content))

    if metadata is not None and compute_fingerprint(content) != metadata.fingerprint:
        score -= 0.15

    if len(content) < 50:
        score -= 0.3
    elif len(content) > 1_000_000:
        score -= 0.1

    if count_semantic_markers(content) >= 2:
        score += 0.1

    return _clamp(score, low=0.1)


def compression_health_score(metadata: ArchiveRecord | None) -> float:
    """Closeness of the achieved compression ratio to the tier's target."""
    if metadata is None:
        return 0.8
    ideal = metadata.archive_level.target_ratio
    return _clamp(1 - abs(metadata.compression_ratio - ideal) / ideal)


def token_efficiency_score(characters: int, tokens: int) -> float:
    if tokens <= 0:
        return 0.1
    ratio = characters / tokens
    return _clamp(1 - abs(ratio - IDEAL_CHARS_PER_TOKEN) / IDEAL_CHARS_PER_TOKEN, low=0.1)


def overall_score(scores: HealthScores, weights: HealthWeights) -> float:
    total = (
        scores.freshness * weights.freshness
        + scores.usage_pattern * weights.usage_pattern
        + scores.data_integrity * weights.data_integrity
        + scores.compression_health * weights.compression_health
        + scores.token_efficiency * weights.token_efficiency
    )
    return _clamp(total)


def determine_level(score: float, thresholds: HealthThresholds) -> HealthLevel:
    if score >= thresholds.excellent:
        return HealthLevel.EXCELLENT
    if score >= thresholds.good:
        return HealthLevel.GOOD
    if score >= thresholds.warning:
        return HealthLevel.WARNING
    if score >= thresholds.critical:
        return HealthLevel.CRITICAL
    return HealthLevel.FAILING


def generate_recommendations(scores: HealthScores, level: HealthLevel) -> list[str]:
    values = scores.to_dict()
    recommendations = [
        message for name, trigger, message in RECOMMENDATION_TRIGGERS if values[name] < trigger
    ]
    if level is HealthLevel.EXCELLENT:
        recommendations.append("Context is in excellent health")
    elif level is HealthLevel.FAILING:
        recommendations.append("URGENT: context requires immediate attention or archival")
    return recommendations
