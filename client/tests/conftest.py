"""Shared fixtures for client tests."""

from __future__ import annotations

import pytest

from chatroom_core.main import Broker
from chatroom_core.settings import BrokerSettings


@pytest.fixture
async def broker():
    """A real broker on an ephemeral port."""
    b = Broker(BrokerSettings(
        port=0, heartbeat_interval=60.0, participants_interval=60.0,
    ))
    await b.start()
    yield b
    await b.shutdown()


@pytest.fixture
def broker_url(broker):
    return f"ws://127.0.0.1:{broker.port}"
