"""Context window usage monitoring."""

from .window_monitor import ContextSource, ContextWindowMonitor, basic_truncate

__all__ = ["ContextSource", "ContextWindowMonitor", "basic_truncate"]
