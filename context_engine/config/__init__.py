"""Configuration management module for the context engine.

This module provides configuration management with:
- YAML-based configuration
- Type validation via Pydantic
- Explicit reload with change callbacks
"""

from .loader import ConfigLoadError, load_config, load_config_from_string
from .manager import ConfigManager
from .models import (
    EngineConfig,
    HealthConfig,
    LoggingConfig,
    MonitorConfig,
    OracleConfig,
    PersistenceConfig,
    PrunerConfig,
    TokenCounterConfig,
)

__all__ = [
    "ConfigLoadError",
    "ConfigManager",
    "EngineConfig",
    "HealthConfig",
    "LoggingConfig",
    "MonitorConfig",
    "OracleConfig",
    "PersistenceConfig",
    "PrunerConfig",
    "TokenCounterConfig",
    "load_config",
    "load_config_from_string",
]
