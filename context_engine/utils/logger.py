"""Structured JSON logging configuration with automatic session id injection.

Log level guidelines:
   - ERROR: Caught failures (emergency compaction, maintenance job, archive write)
   - WARNING: Fallbacks and integrity issues (oracle fallback, fingerprint mismatch)
   - INFO: Lifecycle events (monitoring started/stopped, archive/restore, maintenance)
   - DEBUG: Routine operations (cache hits, per-strategy reductions, polls)

Always use the `extra` parameter for contextual data:

    logger.info(
        "Context archived",
        extra={
            "context_id": context_id,
            "archive_level": "Dormant",
            "duration_ms": duration,
        }
    )

Example:
    from ..utils.logger import get_logger

    logger = get_logger(__name__)
    logger.debug("Token cache hit", extra={"tokens": 120})
"""

import logging
import sys
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pythonjsonlogger import jsonlogger

if TYPE_CHECKING:
    from ..config.models import LoggingConfig


# Session being processed by the current task, set by monitors and maintenance jobs
_current_session_id: ContextVar[str | None] = ContextVar("current_session_id", default=None)


def bind_session_id(session_id: str | None) -> Any:
    """Set the session id for log records emitted from the current task.

    Returns:
        Token usable with `reset_session_id`
    """
    return _current_session_id.set(session_id)


def reset_session_id(token: Any) -> None:
    """Restore the session id that was active before `bind_session_id`."""
    _current_session_id.reset(token)


class SessionIDFilter(logging.Filter):
    """Filter that injects the current session id into stdlib log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _current_session_id.get()
        record.module_path = record.name
        return True


class SessionInfoProcessor:
    """Structlog processor that adds session and module information."""

    def __call__(self, logger: Any, method_name: str, event_dict: dict) -> dict:
        session_id = _current_session_id.get()
        if session_id and "session_id" not in event_dict:
            event_dict["session_id"] = session_id

        event_dict["module"] = event_dict.get("logger", "unknown")
        return event_dict


def _parse_max_bytes(max_size: str) -> int:
    """Parse a size string such as "10MB" into bytes."""
    max_size_str = max_size.upper()
    if max_size_str.endswith("MB"):
        return int(float(max_size_str[:-2]) * 1024 * 1024)
    if max_size_str.endswith("KB"):
        return int(float(max_size_str[:-2]) * 1024)
    if max_size_str.endswith("GB"):
        return int(float(max_size_str[:-2]) * 1024 * 1024 * 1024)
    try:
        return int(max_size_str)
    except ValueError:
        return 10 * 1024 * 1024


def setup_logging(config: "LoggingConfig") -> None:
    """Setup structured logging with JSON format and session id injection.

    Args:
        config: Logging configuration
    """
    session_filter = SessionIDFilter()

    if config.format == "json":
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s %(session_id)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "module",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-30s | session_id=%(session_id)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers: list[logging.Handler] = []

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=_parse_max_bytes(config.max_size),
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.addFilter(session_filter)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if config.console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.addFilter(session_filter)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        handlers=handlers,
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f", utc=False),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        SessionInfoProcessor(),
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with automatic session id injection.

    Args:
        name: Logger name (typically __name__)
        **kwargs: Additional context to bind to the logger

    Returns:
        Structured logger instance
    """
    logger = structlog.get_logger(name)
    if kwargs:
        logger = logger.bind(**kwargs)
    return logger
