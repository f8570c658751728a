"""Builders shared by the test suite."""

from datetime import datetime, timedelta, timezone

from context_engine.models.events import format_timestamp

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable replacement for utc_now."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def block(tag: str, at: datetime, *lines: str) -> str:
    """Render one tagged block with a timestamp field."""
    body = [f'    timestamp: "{format_timestamp(at)}"'] + [f"    {line}" for line in lines]
    return f"<{tag}>\n" + "\n".join(body) + f"\n</{tag}>"


def wrap(blocks: list[str], wrapper: str = "workflow_context") -> str:
    return f"<{wrapper}>\n" + "\n\n".join(blocks) + f"\n</{wrapper}>"
