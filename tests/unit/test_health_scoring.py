"""Unit tests for health sub-scores."""

from datetime import timedelta

import pytest

from context_engine.config.models import HealthThresholds, HealthWeights
from context_engine.models.archive import ArchiveLevel, ArchiveRecord, SessionSnapshot
from context_engine.models.health import HealthLevel, HealthScores
from context_engine.models.session import ContextScope
from context_engine.services.health import scoring
from context_engine.services.persistence import compute_fingerprint

from tests.helpers import BASE_TIME, block, wrap

WELL_FORMED = wrap([
    block("session_start", BASE_TIME, 'goal: "ship the release"'),
    block("task_progress", BASE_TIME, "step: 1", "notes: drafted the changelog"),
])


def make_record(ratio: float, level: ArchiveLevel = ArchiveLevel.DORMANT, fingerprint: str = "0" * 16):
    return ArchiveRecord(
        context_id="ctx",
        scope=ContextScope.SESSION,
        archive_level=level,
        original_size=1000,
        compressed_size=int(1000 * ratio),
        compression_ratio=ratio,
        fingerprint=fingerprint,
        original_tokens=250,
        compressed_tokens=int(250 * ratio),
        archived_at=BASE_TIME,
        last_activity=BASE_TIME - timedelta(days=8),
        age_seconds=8 * 86400,
        context_metadata=SessionSnapshot(scope=ContextScope.SESSION),
    )


class TestFreshness:

    @pytest.mark.parametrize(
        "days, expected",
        [
            (0, 1.0),
            (1, 1.0),
            (4, 0.65),
            (7, 0.5),
            (30, 0.1),
            (60, 0.055),
            (90, 0.01),
            (365, 0.01),
        ],
    )
    def test_decay(self, days, expected):
        assert scoring.freshness_score(days) == pytest.approx(expected)


class TestUsagePattern:

    def test_events_and_depth(self):
        assert scoring.usage_pattern_score(25, 0) == pytest.approx(0.5)
        assert scoring.usage_pattern_score(25, 2) == pytest.approx(0.7)
        assert scoring.usage_pattern_score(25, 5) == pytest.approx(0.4)
        assert scoring.usage_pattern_score(100, 1) == 1.0
        assert scoring.usage_pattern_score(0, 4) == 0.0


class TestDataIntegrity:

    def test_well_formed(self):
        assert scoring.data_integrity_score(WELL_FORMED) == 1.0

    def test_empty_or_tiny(self):
        assert scoring.data_integrity_score("") == 0.1
        assert scoring.data_integrity_score("<a>") == 0.1

    def test_missing_close_tag(self):
        content = WELL_FORMED.replace("</workflow_context>", "")
        assert scoring.data_integrity_score(content) == pytest.approx(0.9)

    def test_no_structure(self):
        content = "plain words without any structure at all, only a few sentences of prose."
        assert scoring.data_integrity_score(content) == pytest.approx(0.6)

    def test_corruption_indicators(self):
        content = WELL_FORMED + "\x01 <>"
        assert scoring.data_integrity_score(content) == pytest.approx(0.94)
        assert scoring.data_integrity_score(content) < scoring.data_integrity_score(WELL_FORMED)

    def test_fingerprint_mismatch(self):
        matching = make_record(0.5, fingerprint=compute_fingerprint(WELL_FORMED))
        mismatched = make_record(0.5)
        assert scoring.data_integrity_score(WELL_FORMED, matching) == 1.0
        assert scoring.data_integrity_score(WELL_FORMED, mismatched) == pytest.approx(0.95)


class TestCompressionAndTokens:

    def test_compression_without_archive(self):
        assert scoring.compression_health_score(None) == 0.8

    def test_compression_against_tier_target(self):
        assert scoring.compression_health_score(make_record(0.5)) == pytest.approx(1.0)
        assert scoring.compression_health_score(make_record(0.75)) == pytest.approx(0.5)
        assert scoring.compression_health_score(make_record(2.0)) == 0.0
        assert scoring.compression_health_score(
            make_record(0.2, level=ArchiveLevel.DEEP_SLEEP)
        ) == pytest.approx(1.0)

    def test_token_efficiency(self):
        assert scoring.token_efficiency_score(350, 100) == pytest.approx(1.0)
        assert scoring.token_efficiency_score(400, 100) == pytest.approx(1 - 0.5 / 3.5)
        assert scoring.token_efficiency_score(700, 100) == 0.1
        assert scoring.token_efficiency_score(0, 0) == 0.1


class TestOverall:

    def setup_method(self):
        self.weights = HealthWeights()
        self.thresholds = HealthThresholds()

    def test_weighted_sum(self):
        scores = HealthScores(1.0, 0.5, 1.0, 0.8, 1.0)
        expected = 0.30 + 0.10 + 0.25 + 0.12 + 0.10
        assert scoring.overall_score(scores, self.weights) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "score, level",
        [
            (0.95, HealthLevel.EXCELLENT),
            (0.8, HealthLevel.EXCELLENT),
            (0.6, HealthLevel.GOOD),
            (0.45, HealthLevel.WARNING),
            (0.2, HealthLevel.CRITICAL),
            (0.19, HealthLevel.FAILING),
        ],
    )
    def test_levels(self, score, level):
        assert scoring.determine_level(score, self.thresholds) is level

    def test_recommendations_excellent(self):
        scores = HealthScores(1.0, 1.0, 1.0, 1.0, 1.0)
        assert scoring.generate_recommendations(scores, HealthLevel.EXCELLENT) == [
            "Context is in excellent health"
        ]

    def test_recommendations_failing(self):
        scores = HealthScores(0.01, 0.0, 0.1, 0.0, 0.1)
        recommendations = scoring.generate_recommendations(scores, HealthLevel.FAILING)
        assert len(recommendations) == 6
        assert recommendations[-1].startswith("URGENT")
