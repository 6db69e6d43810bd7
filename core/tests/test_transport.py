"""Tests for chatroom_core.transport with real sockets and recording handlers."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from websockets.asyncio.client import connect

from chatroom_core.transport import WebSocketConnection, WebSocketServer


class Recorder:
    """Collects server callbacks for assertions."""

    def __init__(self) -> None:
        self.messages: asyncio.Queue = asyncio.Queue()
        self.closes: asyncio.Queue = asyncio.Queue()
        self.opened: list[WebSocketConnection] = []

    async def on_message(self, env, conn) -> None:
        await self.messages.put((env, conn))

    async def on_close(self, conn, code, reason) -> None:
        await self.closes.put((conn, code, reason))

    def on_open(self, conn) -> None:
        self.opened.append(conn)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def server(recorder):
    srv = WebSocketServer(
        recorder.on_message,
        on_close=recorder.on_close,
        on_open=recorder.on_open,
        port=0,
    )
    await srv.start()
    yield srv
    await srv.stop()


def _url(server) -> str:
    return f"ws://127.0.0.1:{server.port}"


async def test_bound_port_is_reported(server):
    assert server.port != 0


async def test_decoded_envelope_reaches_handler(server, recorder):
    async with connect(_url(server)) as ws:
        await ws.send(json.dumps({"type": "chat", "text": "hi"}))
        env, conn = await asyncio.wait_for(recorder.messages.get(), timeout=2.0)
    assert env.kind == "chat"
    assert env.text == "hi"
    assert recorder.opened == [conn]


async def test_malformed_frames_dropped_connection_survives(server, recorder):
    async with connect(_url(server)) as ws:
        await ws.send("not json")
        await ws.send(json.dumps({"type": "nope"}))
        await ws.send(json.dumps({"type": "who"}))
        env, _ = await asyncio.wait_for(recorder.messages.get(), timeout=2.0)
        assert env.kind == "who"
    assert recorder.messages.empty()


async def test_handler_error_does_not_close(recorder):
    calls = []

    async def flaky(env, conn):
        calls.append(env.kind)
        if env.kind == "chat":
            raise RuntimeError("boom")
        await conn.send({"type": "system", "text": "ok", "timestamp": 1})

    srv = WebSocketServer(flaky, on_close=recorder.on_close, port=0)
    await srv.start()
    try:
        async with connect(_url(srv)) as ws:
            await ws.send(json.dumps({"type": "chat", "text": "x"}))
            await ws.send(json.dumps({"type": "who"}))
            reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert reply["text"] == "ok"
        assert calls == ["chat", "who"]
    finally:
        await srv.stop()


@pytest.mark.parametrize("code", [1000, 1001, 4000])
async def test_close_code_reported(server, recorder, code):
    ws = await connect(_url(server))
    await ws.close(code=code, reason="bye")
    _, got, reason = await asyncio.wait_for(recorder.closes.get(), timeout=2.0)
    assert got == code
    assert reason == "bye"


async def test_abrupt_drop_reported_as_abnormal(server, recorder):
    ws = await connect(_url(server))
    ws.transport.abort()
    _, code, _ = await asyncio.wait_for(recorder.closes.get(), timeout=2.0)
    assert code == 1006


async def test_terminate_reports_no_code(server, recorder):
    async with connect(_url(server)) as ws:
        await ws.send(json.dumps({"type": "who"}))
        _, conn = await asyncio.wait_for(recorder.messages.get(), timeout=2.0)
        conn.terminate()
        closed, code, _ = await asyncio.wait_for(recorder.closes.get(), timeout=2.0)
    assert closed is conn
    assert code is None
    assert conn.terminated is True


async def test_send_after_close_is_skipped(server, recorder):
    async with connect(_url(server)) as ws:
        await ws.send(json.dumps({"type": "who"}))
        _, conn = await asyncio.wait_for(recorder.messages.get(), timeout=2.0)
    await asyncio.wait_for(recorder.closes.get(), timeout=2.0)
    assert conn.is_open is False
    assert await conn.send({"type": "system"}) is False
    assert await conn.ping() is None


async def test_pong_resolves_ping_waiter(server, recorder):
    async with connect(_url(server)) as ws:
        await ws.send(json.dumps({"type": "who"}))
        _, conn = await asyncio.wait_for(recorder.messages.get(), timeout=2.0)
        waiter = await conn.ping()
        await asyncio.wait_for(waiter, timeout=2.0)


async def test_serve_forever_requires_start():
    srv = WebSocketServer(AsyncMock(), port=0)
    with pytest.raises(RuntimeError):
        await srv.serve_forever()


async def test_bind_conflict_raises(server):
    clash = WebSocketServer(AsyncMock(), port=server.port)
    with pytest.raises(OSError):
        await clash.start()
