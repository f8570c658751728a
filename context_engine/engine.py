"""Composition root wiring every context engine component.

    engine = ContextEngine(load_config(Path("context-engine.yaml")))
    await engine.init()
    engine.register_session("s1", content=log_text)
    await engine.monitor_session("s1")
    ...
    await engine.shutdown()
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .config.manager import ConfigManager
from .config.models import EngineConfig
from .models.archive import ArchiveRecord, RestoreResult
from .models.events import utc_now
from .models.monitor import MonitorState
from .models.session import ContextScope, SessionContext
from .registry import ContextRegistry
from .services.compression.oracle import TokenOracle
from .services.compression.pruner import MODE_EMERGENCY, MODE_SMART, ContextPruner, PruneResult
from .services.compression.token_counter import TokenCounter
from .services.events import EventBus
from .services.health.health_monitor import ContextHealthMonitor
from .services.health.scheduler import MaintenanceScheduler
from .services.monitoring.window_monitor import ContextSource, ContextWindowMonitor
from .services.persistence.long_term import LongTermPersistence
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


class RegistrySource:
    """Content source reading and writing a session through the registry."""

    def __init__(self, registry: ContextRegistry, session_id: str) -> None:
        self.registry = registry
        self.session_id = session_id

    def get_current_context(self) -> str:
        return self.registry.get(self.session_id).content

    def update_context(self, content: str) -> None:
        self.registry.update_content(self.session_id, content, touch=False)


class ContextEngine:
    """Owns the counter, pruner, registry, event bus, persistence and monitors."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        oracle: TokenOracle | None = None,
        clock: Callable[[], datetime] = utc_now,
        configure_logging: bool = False,
    ) -> None:
        """Initialize engine components.

        Args:
            config: Engine configuration (defaults when omitted)
            oracle: Precise token oracle overriding `config.token_counter.oracle`
            clock: Source of "now" shared by every component
            configure_logging: Apply `config.logging` on init()
        """
        self.config = config or EngineConfig()
        self.clock = clock
        self._configure_logging = configure_logging
        self._initialized = False

        self.event_bus = EventBus()
        self.registry = ContextRegistry(clock=clock)
        self.token_counter = TokenCounter(self.config.token_counter, oracle=oracle)
        self.pruner = ContextPruner(self.token_counter, self.config.pruner, clock=clock)
        self.persistence = LongTermPersistence(
            self.token_counter, self.pruner, self.config.persistence, clock=clock
        )
        self.health_monitor = ContextHealthMonitor(
            self.token_counter,
            self.persistence,
            registry=self.registry,
            event_bus=self.event_bus,
            config=self.config.health,
            clock=clock,
        )
        self.scheduler = MaintenanceScheduler(self.health_monitor, self.config.health)
        self.monitors: dict[str, ContextWindowMonitor] = {}

    @classmethod
    def from_config_file(cls, config_path: str | Path, **kwargs: Any) -> "ContextEngine":
        manager = ConfigManager(Path(config_path))
        return cls(manager.config, **kwargs)

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Start background maintenance. Safe to call more than once."""
        if self._initialized:
            return
        if self._configure_logging:
            setup_logging(self.config.logging)
        self.scheduler.start()
        self._initialized = True
        logger.info(
            "Context engine initialized",
            extra={"background_maintenance": self.scheduler.running},
        )

    async def shutdown(self) -> None:
        """Stop every monitor and the scheduler. Safe to call more than once."""
        for session_id in list(self.monitors):
            await self.stop_monitoring(session_id)
        self.scheduler.stop()
        await self.event_bus.drain()
        if self._initialized:
            logger.info("Context engine shut down")
        self._initialized = False

    def register_session(
        self,
        session_id: str,
        content: str = "",
        scope: ContextScope | str = ContextScope.SESSION,
        **fields: Any,
    ) -> SessionContext:
        session = self.registry.register(
            session_id=session_id, content=content, scope=scope, **fields
        )
        if content and "events_count" not in fields:
            session = self.registry.update_content(session_id, content, touch=False)
        return session

    def _monitor_for(self, session_id: str) -> ContextWindowMonitor:
        monitor = self.monitors.get(session_id)
        if monitor is None:
            monitor = ContextWindowMonitor(
                session_id,
                self.token_counter,
                pruner=self.pruner,
                event_bus=self.event_bus,
                config=self.config.monitor,
                clock=self.clock,
            )
            self.monitors[session_id] = monitor
        return monitor

    async def monitor_session(
        self,
        session_id: str,
        source: ContextSource | None = None,
        interval: float | None = None,
    ) -> ContextWindowMonitor:
        """Start polling a session, by default through the registry."""
        if source is None:
            self.registry.get(session_id)
            source = RegistrySource(self.registry, session_id)
        monitor = self._monitor_for(session_id)
        await monitor.start_monitoring(source, interval)
        return monitor

    async def check_session(self, session_id: str, content: str | None = None) -> MonitorState:
        """Push-model check of a session's current or given content."""
        if content is None:
            content = self.registry.get(session_id).content
        return await self._monitor_for(session_id).check_context_usage(content)

    async def stop_monitoring(self, session_id: str) -> None:
        monitor = self.monitors.pop(session_id, None)
        if monitor is not None:
            await monitor.stop_monitoring()

    async def prune_session(
        self,
        session_id: str,
        target_reduction: float = 0.3,
        emergency: bool = False,
    ) -> PruneResult:
        """Prune a registered session and store the result in the registry."""
        session = self.registry.get(session_id)
        mode = MODE_EMERGENCY if emergency else MODE_SMART
        result = await self.pruner.prune_with_report(session.content, target_reduction, mode)
        self.registry.update_content(session_id, result.content, touch=False)
        return result

    async def archive_session(self, session_id: str) -> ArchiveRecord:
        session = self.registry.get(session_id)
        record = await self.persistence.archive_context(session_id, session, session.scope)
        self.registry.set_archive_record(session_id, record)
        return record

    async def restore_session(
        self,
        session_id: str,
        scope: ContextScope | str = ContextScope.SESSION,
    ) -> RestoreResult:
        """Restore an archive and (re-)register it as a live session."""
        result = await self.persistence.restore_context(session_id, scope)
        snapshot = result.metadata.context_metadata
        self.registry.register(
            session_id=session_id,
            scope=result.scope,
            content=result.content,
            last_activity=result.metadata.last_activity,
            created=snapshot.created or result.metadata.archived_at,
            current_task=snapshot.current_task,
            stack_depth=snapshot.stack_depth,
            events_count=result.restoration_summary.get("events_preserved", 0),
        )
        self.registry.set_archive_record(session_id, result.metadata)
        return result

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "sessions": len(self.registry),
            "monitors": {sid: m.get_status() for sid, m in self.monitors.items()},
            "token_cache": self.token_counter.get_cache_stats(),
            "health": self.health_monitor.get_health_summary(self.scheduler.running),
        }
