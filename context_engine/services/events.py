"""Named-event observer used as the alerting sink.

Handlers are called synchronously in registration order. A failing handler
is logged and never affects the emitter or the remaining handlers.
Coroutine handlers are scheduled as tasks on the running loop.
"""

import asyncio
import inspect
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable

from ..utils.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[str, dict[str, Any]], Any]

WILDCARD = "*"


class EventBus:
    """Register handlers per event name and deliver emitted payloads."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()
        self.emitted_count = 0

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for an event name, or "*" for every event."""
        self._handlers[event_name].append(handler)

    def off(self, event_name: str, handler: EventHandler) -> bool:
        """Remove a previously registered handler.

        Returns:
            True if the handler was registered
        """
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event_name: str, payload: dict[str, Any] | None = None) -> None:
        """Deliver an event to its handlers, then to wildcard handlers."""
        data = dict(payload or {})
        data.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        self.emitted_count += 1

        handlers = list(self._handlers.get(event_name, [])) + list(
            self._handlers.get(WILDCARD, [])
        )
        for handler in handlers:
            try:
                result = handler(event_name, data)
                if inspect.isawaitable(result):
                    self._schedule(event_name, result)
            except Exception as e:
                logger.warning(
                    "Event handler failed",
                    extra={"event_name": event_name, "error": str(e)},
                )

    def _schedule(self, event_name: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Async event handler dropped, no running loop",
                extra={"event_name": event_name},
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run_async(event_name, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_async(self, event_name: str, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(
                "Async event handler failed",
                extra={"event_name": event_name, "error": str(e)},
            )

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def handler_count(self, event_name: str | None = None) -> int:
        if event_name is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(event_name, []))
