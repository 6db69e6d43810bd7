"""WebSocket transport for the chatroom broker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from websockets.asyncio.server import Server as WsServer, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode
from websockets.protocol import State

from .protocol import Envelope, ProtocolError, decode_envelope, encode_message

log = logging.getLogger(__name__)


# ── Connection ──────────────────────────────────────────────────────


class WebSocketConnection:
    """Wraps a websockets server connection.

    Sends are fire-and-forget: a connection that is not open is skipped
    and a send that fails mid-flight is swallowed, so one bad peer never
    interrupts delivery to the others.
    """

    def __init__(self, ws: ServerConnection) -> None:
        self._ws = ws
        self.terminated = False

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.remote_address}>"

    @property
    def remote_address(self) -> Any:
        return self._ws.remote_address

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def send(self, msg: dict[str, Any]) -> bool:
        """Send *msg* if the connection is open. Returns True if written."""
        if not self.is_open:
            log.debug("skipping send to %s: not open", self)
            return False
        try:
            await self._ws.send(encode_message(msg))
        except ConnectionClosed:
            log.debug("send to %s failed: connection closed", self)
            return False
        return True

    async def ping(self) -> Awaitable[float] | None:
        """Send a ping frame. Returns a waiter resolved by the matching pong."""
        if not self.is_open:
            return None
        try:
            return await self._ws.ping()
        except ConnectionClosed:
            return None

    def terminate(self) -> None:
        """Drop the underlying TCP connection without a closing handshake."""
        self.terminated = True
        self._ws.transport.abort()


# ── Server ──────────────────────────────────────────────────────────

MessageHandler = Callable[[Envelope, WebSocketConnection], Awaitable[None]]
OpenHandler = Callable[[WebSocketConnection], None]
# close_code is None when the broker terminated the connection itself.
CloseHandler = Callable[[WebSocketConnection, "int | None", str], Awaitable[None]]


class WebSocketServer:
    """WebSocket listener that feeds decoded envelopes to *handler*."""

    def __init__(
        self,
        handler: MessageHandler,
        on_close: CloseHandler | None = None,
        on_open: OpenHandler | None = None,
        host: str = "127.0.0.1",
        port: int = 3030,
    ) -> None:
        self._handler = handler
        self._on_close = on_close
        self._on_open = on_open
        self._host = host
        self._port = port
        self._server: WsServer | None = None

    @property
    def port(self) -> int:
        """The bound port (useful when started with port 0)."""
        if self._server is None:
            return self._port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        # Liveness is probed by the broker's own heartbeat.
        self._server = await serve(
            self._ws_handler,
            self._host,
            self._port,
            ping_interval=None,
        )
        log.info("WebSocket listening on ws://%s:%d", self._host, self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            log.info("WebSocket listener closed")

    async def serve_forever(self) -> None:
        if self._server is None:
            raise RuntimeError("call start() first")
        await self._server.serve_forever()

    async def _ws_handler(self, ws: ServerConnection) -> None:
        conn = WebSocketConnection(ws)
        if self._on_open is not None:
            self._on_open(conn)

        close_code: int | None = CloseCode.ABNORMAL_CLOSURE
        reason = ""
        try:
            while True:
                try:
                    frame = await ws.recv()
                except ConnectionClosed as exc:
                    if exc.rcvd is not None:
                        close_code, reason = exc.rcvd.code, exc.rcvd.reason
                    break

                try:
                    envelope = decode_envelope(frame)
                except ProtocolError as exc:
                    log.warning("malformed message from %s: %s", conn, exc)
                    continue

                try:
                    await self._handler(envelope, conn)
                except Exception:
                    log.exception("handler error for %s", envelope.kind)
        finally:
            if conn.terminated:
                close_code = None
            if self._on_close is not None:
                await self._on_close(conn, close_code, reason)
