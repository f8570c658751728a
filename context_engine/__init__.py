"""Adaptive context window management engine.

Token accounting, layered pruning, threshold monitoring with trend
prediction, tiered long-term archival and health-scored maintenance for the
event logs of long-running sessions.
"""

from .config import ConfigManager, EngineConfig, load_config, load_config_from_string
from .engine import ContextEngine, RegistrySource
from .registry import ContextRegistry
from .services.compression import ContextPruner, PruneResult, TokenCounter
from .services.events import EventBus
from .services.health import ContextHealthMonitor, MaintenanceScheduler
from .services.monitoring import ContextWindowMonitor
from .services.persistence import LongTermPersistence

__version__ = "0.1.0"

__all__ = [
    "ConfigManager",
    "ContextEngine",
    "ContextHealthMonitor",
    "ContextPruner",
    "ContextRegistry",
    "ContextWindowMonitor",
    "EngineConfig",
    "EventBus",
    "LongTermPersistence",
    "MaintenanceScheduler",
    "PruneResult",
    "RegistrySource",
    "TokenCounter",
    "load_config",
    "load_config_from_string",
]
