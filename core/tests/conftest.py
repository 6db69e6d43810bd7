"""Shared fixtures for broker tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from chatroom_core.main import Broker
from chatroom_core.protocol import Clock
from chatroom_core.settings import BrokerSettings
from chatroom_core.transport import WebSocketConnection


class FakeTime:
    """Controllable time source for `Clock`."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def clock(fake_time):
    return Clock(time_fn=fake_time)


@pytest.fixture
def make_conn():
    """Factory for mock connections with async send and ping."""
    def _make() -> MagicMock:
        conn = MagicMock(spec=WebSocketConnection)
        conn.send = AsyncMock(return_value=True)
        conn.ping = AsyncMock(return_value=None)
        return conn
    return _make


@pytest.fixture
def mock_conn(make_conn):
    return make_conn()


@pytest.fixture
def mock_conn2(make_conn):
    return make_conn()


@pytest.fixture
async def running_broker():
    """Start a real broker on an ephemeral port with slow timers."""
    broker = Broker(BrokerSettings(
        port=0, heartbeat_interval=60.0, participants_interval=60.0,
    ))
    await broker.start()
    yield broker
    await broker.shutdown()


@pytest.fixture
def url(running_broker):
    return f"ws://127.0.0.1:{running_broker.port}"
