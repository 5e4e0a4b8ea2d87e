"""
Shared pytest fixtures for all test modules.

Every test gets its own EventChannel + TransactionStore pair, so no state
leaks between tests. The store runs on a FakeClock so durations are exact.
"""
import asyncio
import json
import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from ucp_debugger.dependencies import get_channel, get_store
from ucp_debugger.services.broadcast import EventChannel
from ucp_debugger.services.correlation import TransactionStore


BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: float) -> None:
        self.now = self.now + timedelta(milliseconds=ms)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return EventChannel()


@pytest.fixture
def store(channel, clock):
    return TransactionStore(channel=channel, clock=clock)


@pytest.fixture
def client(store, channel):
    """
    FastAPI TestClient with the store/channel dependencies overridden to use
    the per-test instances. Not used as a context manager, so the lifespan
    hook is skipped.
    """
    from ucp_debugger.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_channel] = lambda: channel
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers (not fixtures), imported directly by test modules.
# ---------------------------------------------------------------------------
def run(coro):
    return asyncio.run(coro)


def parse_frame(frame: str) -> dict:
    """Decode one `data: {...}\\n\\n` SSE frame."""
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):].strip())
