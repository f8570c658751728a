"""Unit tests for EventBus."""

import pytest

from context_engine.services.events import EventBus


class TestEventBus:

    def setup_method(self):
        self.bus = EventBus()
        self.calls: list[tuple[str, str, dict]] = []

    def _handler(self, label: str):
        def handler(name, data):
            self.calls.append((label, name, data))
        return handler

    def test_specific_then_wildcard_in_order(self):
        self.bus.on("*", self._handler("wild"))
        self.bus.on("threshold_warning", self._handler("first"))
        self.bus.on("threshold_warning", self._handler("second"))

        self.bus.emit("threshold_warning", {"level": "warning"})

        assert [label for label, _, _ in self.calls] == ["first", "second", "wild"]
        assert self.calls[0][2]["level"] == "warning"
        assert "timestamp" in self.calls[0][2]
        assert self.bus.emitted_count == 1

    def test_failing_handler_is_isolated(self):
        def broken(name, data):
            raise RuntimeError("handler bug")

        self.bus.on("x", broken)
        self.bus.on("x", self._handler("after"))

        self.bus.emit("x")

        assert [label for label, _, _ in self.calls] == ["after"]

    def test_off(self):
        handler = self._handler("h")
        self.bus.on("x", handler)
        assert self.bus.off("x", handler) is True
        assert self.bus.off("x", handler) is False
        self.bus.emit("x")
        assert self.calls == []
        assert self.bus.handler_count() == 0

    def test_payload_is_copied(self):
        payload = {"a": 1}
        self.bus.on("x", self._handler("h"))
        self.bus.emit("x", payload)
        assert "timestamp" not in payload

    @pytest.mark.asyncio
    async def test_async_handler_is_scheduled(self):
        received = []

        async def handler(name, data):
            received.append(name)

        async def broken(name, data):
            raise ValueError("async bug")

        self.bus.on("y", handler)
        self.bus.on("y", broken)
        self.bus.emit("y")
        await self.bus.drain()

        assert received == ["y"]

    def test_async_handler_without_loop_is_dropped(self):
        async def handler(name, data):
            pass

        self.bus.on("z", handler)
        self.bus.emit("z")
        assert self.bus.handler_count("z") == 1
