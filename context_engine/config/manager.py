"""Engine configuration holder with explicit reload."""

import threading
from pathlib import Path
from typing import Callable

from ..utils.errors import ConfigError, ErrorCode
from ..utils.logger import get_logger
from .loader import ConfigLoadError, load_config
from .models import EngineConfig

logger = get_logger(__name__)

ConfigCallback = Callable[[EngineConfig], None]


class ConfigManager:
    """Serves the active EngineConfig to the composition root.

    The file is read on first access. Without a path, built-in defaults are
    served. `reload()` swaps in a freshly validated config and notifies
    listeners; a config that fails validation never replaces the active one.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._config_path = Path(config_path) if config_path is not None else None
        self._config = config
        self._listeners: list[ConfigCallback] = []
        self._lock = threading.RLock()

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    @property
    def config(self) -> EngineConfig:
        with self._lock:
            if self._config is None:
                self._config = self._read(ErrorCode.CONFIG_INVALID)
            return self._config

    def _read(self, code: ErrorCode) -> EngineConfig:
        if self._config_path is None:
            return EngineConfig()
        if not self._config_path.is_file():
            code = ErrorCode.CONFIG_NOT_FOUND
        try:
            return load_config(self._config_path)
        except ConfigLoadError as e:
            raise ConfigError(str(e), details={"path": str(self._config_path)}, code=code) from e

    def reload(self) -> EngineConfig:
        """Re-read the file and notify listeners.

        Raises:
            ConfigError: If the file is missing or invalid; the active
                configuration is left unchanged
        """
        with self._lock:
            fresh = self._read(ErrorCode.CONFIG_RELOAD_FAILED)
            self._config = fresh
            listeners = list(self._listeners)

        logger.info(
            "Engine configuration reloaded",
            extra={"path": str(self._config_path) if self._config_path else None},
        )
        for listener in listeners:
            try:
                listener(fresh)
            except Exception as e:
                logger.warning(
                    "Config change listener failed",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
        return fresh

    def on_change(self, callback: ConfigCallback) -> None:
        """Call `callback(new_config)` after every successful reload."""
        self._listeners.append(callback)

    def remove_callback(self, callback: ConfigCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)
