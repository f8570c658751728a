"""Unit tests for LongTermPersistence and ArchiveStore."""

import asyncio
from datetime import timedelta

import pytest

from context_engine.config.models import PersistenceConfig
from context_engine.models.archive import DAY_SECONDS, ArchiveLevel
from context_engine.models.session import ContextScope, SessionContext
from context_engine.services.compression.event_log import parse_event_log
from context_engine.services.compression.pruner import ContextPruner
from context_engine.services.compression.token_counter import TokenCounter
from context_engine.services.persistence import ArchiveStore, LongTermPersistence, compute_fingerprint
from context_engine.services.persistence.archive_store import safe_name
from context_engine.utils.errors import (
    ArchiveNotFoundError,
    InvalidScopeError,
    ScopeMismatchError,
)
from context_engine.utils.file_utils import async_read_text, async_write_text

from tests.helpers import FakeClock, block, wrap


def build_log(clock: FakeClock, days_ago: float, count: int = 8) -> str:
    start = clock.now - timedelta(days=days_ago)
    blocks = [block("session_start", start, 'goal: "migrate the parser"')]
    for i in range(count):
        blocks.append(
            block(
                "task_progress",
                start + timedelta(minutes=i),
                f"step: {i}",
                f"notes: rewrote module_{i} and updated its call sites " + "z" * 60,
            )
        )
    return wrap(blocks)


class TestArchiveLevels:
    """Tier selection from idle age."""

    def test_tier_table(self):
        day = DAY_SECONDS
        assert ArchiveLevel.for_idle_age(0) is ArchiveLevel.ACTIVE
        assert ArchiveLevel.for_idle_age(6 * day) is ArchiveLevel.ACTIVE
        assert ArchiveLevel.for_idle_age(7 * day) is ArchiveLevel.DORMANT
        assert ArchiveLevel.for_idle_age(29.9 * day) is ArchiveLevel.DORMANT
        assert ArchiveLevel.for_idle_age(30 * day) is ArchiveLevel.SLEEPING
        assert ArchiveLevel.for_idle_age(90 * day) is ArchiveLevel.DEEP_SLEEP
        assert ArchiveLevel.for_idle_age(400 * day) is ArchiveLevel.DEEP_SLEEP

    def test_target_ratios(self):
        assert ArchiveLevel.ACTIVE.target_ratio == 0.7
        assert ArchiveLevel.DORMANT.target_ratio == 0.5
        assert ArchiveLevel.SLEEPING.target_ratio == 0.3
        assert ArchiveLevel.DEEP_SLEEP.target_ratio == 0.2
        assert ArchiveLevel.DEEP_SLEEP.value == "Deep-Sleep"


class TestArchiveRestore:
    """Archive and restore round trips."""

    @pytest.fixture(autouse=True)
    def setup(self, temp_dir, clock):
        self.root = temp_dir
        self.clock = clock
        self.counter = TokenCounter()
        self.pruner = ContextPruner(self.counter, clock=clock)
        self.persistence = LongTermPersistence(
            self.counter,
            self.pruner,
            PersistenceConfig(archive_dir=str(temp_dir)),
            clock=clock,
        )

    def _session(self, context_id: str, idle_days: float, scope: str = "session", **fields):
        return SessionContext(
            session_id=context_id,
            scope=scope,
            content=build_log(self.clock, idle_days),
            last_activity=self.clock.now - timedelta(days=idle_days),
            **fields,
        )

    @pytest.mark.asyncio
    async def test_six_day_round_trip(self):
        session = self._session("ctx-6d", 6, current_task="refactor parser", events_count=9)

        record = await self.persistence.archive_context("ctx-6d", session, "session")
        result = await self.persistence.restore_context("ctx-6d", "session")

        assert record.archive_level is ArchiveLevel.ACTIVE
        assert record.fingerprint == compute_fingerprint(
            await self.persistence.store.read_content("ctx-6d", ContextScope.SESSION)
        )
        assert result.integrity_verified is True
        assert result.performance_met is True
        assert result.time_gap_seconds == pytest.approx(6 * DAY_SECONDS)
        assert result.time_gap_days == 6
        assert result.content.startswith("<workflow_context>\n<context_restoration>")
        assert "time_gap_days: 6" in result.content
        summary = result.restoration_summary
        assert summary["archive_level"] == "Active"
        assert summary["original_task"] == "refactor parser"
        assert summary["events_preserved"] >= 1
        assert summary["recommendations"] == []
        assert result.metadata.context_metadata.events_count == 9

    @pytest.mark.asyncio
    async def test_eight_days_is_dormant(self):
        record = await self.persistence.archive_context("ctx-8d", self._session("ctx-8d", 8))

        assert record.archive_level is ArchiveLevel.DORMANT
        assert record.compressed_size <= record.original_size
        assert record.compression_ratio == pytest.approx(
            record.compressed_size / record.original_size
        )

        result = await self.persistence.restore_context("ctx-8d")
        recommendations = result.restoration_summary["recommendations"]
        assert any("week" in r for r in recommendations)
        assert any("task" in r for r in recommendations)

    @pytest.mark.asyncio
    async def test_recent_context_has_no_notice(self):
        await self.persistence.archive_context("ctx-now", self._session("ctx-now", 0.1))
        result = await self.persistence.restore_context("ctx-now")
        assert "<context_restoration>" not in result.content
        assert parse_event_log(result.content).events

    @pytest.mark.asyncio
    async def test_archive_from_dict(self):
        data = {
            "content": build_log(self.clock, 40),
            "last_activity": self.clock.now - timedelta(days=40),
        }

        record = await self.persistence.archive_context("ctx-dict", data, "project")

        assert record.scope is ContextScope.PROJECT
        assert record.archive_level is ArchiveLevel.SLEEPING
        assert (self.root / "projects" / "ctx-dict.xml").exists()
        assert (self.root / "metadata" / "ctx-dict.json").exists()

    @pytest.mark.asyncio
    async def test_scope_mismatch(self):
        await self.persistence.archive_context("ctx-p", self._session("ctx-p", 2), "project")

        with pytest.raises(ScopeMismatchError) as exc_info:
            await self.persistence.restore_context("ctx-p", "session")
        assert exc_info.value.details["archived_scope"] == "project"

    @pytest.mark.asyncio
    async def test_not_found(self):
        with pytest.raises(ArchiveNotFoundError):
            await self.persistence.restore_context("missing")

    @pytest.mark.asyncio
    async def test_missing_content_file(self):
        await self.persistence.archive_context("ctx-x", self._session("ctx-x", 1))
        (self.root / "sessions" / "ctx-x.xml").unlink()

        with pytest.raises(ArchiveNotFoundError):
            await self.persistence.restore_context("ctx-x")

    @pytest.mark.asyncio
    async def test_invalid_scope(self):
        with pytest.raises(InvalidScopeError):
            await self.persistence.archive_context("ctx", self._session("ctx", 1), "global")
        with pytest.raises(InvalidScopeError):
            await self.persistence.restore_context("ctx", "global")

    @pytest.mark.asyncio
    async def test_tampered_content_still_restores(self):
        await self.persistence.archive_context("ctx-t", self._session("ctx-t", 3))
        path = self.root / "sessions" / "ctx-t.xml"
        path.write_text(path.read_text() + "\n<!-- edited -->")

        result = await self.persistence.restore_context("ctx-t")

        assert result.integrity_verified is False
        assert "<!-- edited -->" in result.content

    @pytest.mark.asyncio
    async def test_rearchive_under_other_scope(self):
        await self.persistence.archive_context("ctx-r", self._session("ctx-r", 1), "session")
        await self.persistence.archive_context(
            "ctx-r", self._session("ctx-r", 1, scope="project"), "project"
        )

        assert not (self.root / "sessions" / "ctx-r.xml").exists()
        result = await self.persistence.restore_context("ctx-r", "project")
        assert result.scope is ContextScope.PROJECT
        with pytest.raises(ScopeMismatchError):
            await self.persistence.restore_context("ctx-r", "session")

    @pytest.mark.asyncio
    async def test_concurrent_archives_of_one_id(self):
        session = self._session("ctx-c", 2)

        first, second = await asyncio.gather(
            self.persistence.archive_context("ctx-c", session),
            self.persistence.archive_context("ctx-c", session),
        )

        assert first.fingerprint == second.fingerprint
        assert len(await self.persistence.list_archives()) == 1
        assert (await self.persistence.restore_context("ctx-c")).integrity_verified is True

    @pytest.mark.asyncio
    async def test_crlf_content_round_trip(self):
        session = self._session("ctx-crlf", 0.1)
        session.content = session.content.replace("\n", "\r\n")

        record = await self.persistence.archive_context("ctx-crlf", session)
        result = await self.persistence.restore_context("ctx-crlf")

        stored = (self.root / "sessions" / "ctx-crlf.xml").read_bytes()
        assert b"\r\n" in stored
        assert compute_fingerprint(stored.decode("utf-8")) == record.fingerprint
        assert result.integrity_verified is True

    @pytest.mark.asyncio
    async def test_ids_differing_only_in_separator(self):
        first = self._session("team/a", 1, current_task="first")
        second = self._session("team_a", 1, current_task="second")
        second.content = build_log(self.clock, 1, count=3)

        await self.persistence.archive_context("team/a", first)
        await self.persistence.archive_context("team_a", second)

        restored_first = await self.persistence.restore_context("team/a")
        restored_second = await self.persistence.restore_context("team_a")
        assert restored_first.metadata.context_id == "team/a"
        assert restored_second.metadata.context_id == "team_a"
        assert restored_first.restoration_summary["original_task"] == "first"
        assert restored_second.restoration_summary["original_task"] == "second"
        assert restored_first.content != restored_second.content
        assert len(await self.persistence.list_archives()) == 2

    @pytest.mark.asyncio
    async def test_metadata_of_another_id_is_not_restored(self):
        await self.persistence.archive_context("ctx-own", self._session("ctx-own", 1))
        await self.persistence.archive_context("ctx-other", self._session("ctx-other", 1))
        store = self.persistence.store
        store.metadata_path("ctx-own").write_text(store.metadata_path("ctx-other").read_text())

        with pytest.raises(ArchiveNotFoundError):
            await self.persistence.restore_context("ctx-own")

    @pytest.mark.asyncio
    async def test_list_and_statistics(self):
        await self.persistence.archive_context("a", self._session("a", 1), "session")
        await self.persistence.archive_context("b", self._session("b", 10), "project")
        await self.persistence.archive_context("c", self._session("c", 100), "project")

        assert {r.context_id for r in await self.persistence.list_archives("project")} == {"b", "c"}
        stats = await self.persistence.get_archive_statistics()

        assert stats["total_archives"] == 3
        assert stats["by_scope"] == {"session": 1, "project": 2}
        assert stats["by_level"]["Active"] == 1
        assert stats["by_level"]["Dormant"] == 1
        assert stats["by_level"]["Deep-Sleep"] == 1
        assert 0 < stats["average_compression_ratio"] <= 1.0

    @pytest.mark.asyncio
    async def test_empty_statistics(self):
        stats = await self.persistence.get_archive_statistics()
        assert stats["total_archives"] == 0
        assert stats["oldest_archive"] is None


class TestCleanup:
    """Expired archive cleanup."""

    @pytest.fixture(autouse=True)
    def setup(self, temp_dir, clock):
        self.root = temp_dir
        self.clock = clock
        counter = TokenCounter()
        self.persistence = LongTermPersistence(
            counter,
            ContextPruner(counter, clock=clock),
            PersistenceConfig(archive_dir=str(temp_dir)),
            clock=clock,
        )

    async def _archive(self, context_id: str, idle_days: float) -> None:
        session = SessionContext(
            session_id=context_id,
            content=build_log(self.clock, idle_days),
            last_activity=self.clock.now - timedelta(days=idle_days),
        )
        await self.persistence.archive_context(context_id, session)

    @pytest.mark.asyncio
    async def test_only_expired_deep_sleep_deleted(self):
        await self._archive("old-deep", 100)
        await self._archive("old-active", 1)
        self.clock.advance(days=40)
        await self._archive("fresh-deep", 120)

        report = await self.persistence.cleanup_expired_contexts()

        assert report.count == 1
        assert report.freed_bytes > 0
        assert report.errors == []
        remaining = {r.context_id for r in await self.persistence.list_archives()}
        assert remaining == {"old-active", "fresh-deep"}
        assert not (self.root / "sessions" / "old-deep.xml").exists()

    @pytest.mark.asyncio
    async def test_explicit_retention_window(self):
        await self._archive("deep", 100)
        self.clock.advance(days=40)

        assert (await self.persistence.cleanup_expired_contexts(retention_days=60)).count == 0
        assert (await self.persistence.cleanup_expired_contexts(retention_days=10)).count == 1


class TestArchiveStore:
    """Store layout and listing."""

    def test_safe_name(self):
        assert safe_name("build-42") == "build-42"
        assert safe_name("team/ctx 1") == "team%2Fctx%201"
        assert safe_name("../etc") == "..%2Fetc"
        assert safe_name("") == "%"
        assert safe_name("team/a") != safe_name("team_a")

    @pytest.mark.asyncio
    async def test_content_keeps_line_endings(self, temp_dir):
        await async_write_text(temp_dir / "log.xml", "a\r\nb\rc\n")
        assert await async_read_text(temp_dir / "log.xml") == "a\r\nb\rc\n"

    def test_paths(self, temp_dir):
        store = ArchiveStore(temp_dir)
        assert store.content_path("a", ContextScope.PROJECT) == temp_dir / "projects" / "a.xml"
        assert store.metadata_path("a") == temp_dir / "metadata" / "a.json"

    @pytest.mark.asyncio
    async def test_list_skips_unreadable(self, temp_dir):
        store = ArchiveStore(temp_dir)
        (temp_dir / "metadata").mkdir()
        (temp_dir / "metadata" / "broken.json").write_text("{not json")

        assert await store.list_records() == []
        assert await store.read_metadata("nothing") is None
