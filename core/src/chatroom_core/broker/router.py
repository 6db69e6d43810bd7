"""Message router: dispatch by kind, fan-out, and connection lifecycle."""

from __future__ import annotations

import logging
from typing import Any

from websockets.frames import CloseCode

from ..protocol import (
    CATEGORY_LEAVING,
    Clock,
    Envelope,
    UNKNOWN,
    chat_message,
    discovery_message,
    participants_update,
    system_notice,
    who_response,
)
from ..transport import WebSocketConnection

from .registry import ConnectionRegistry

log = logging.getLogger(__name__)

LEFT_NORMALLY = "left normally"
GOING_AWAY = "going away"
CONNECTION_LOST = "connection lost"
HEARTBEAT_TIMEOUT = "heartbeat timeout"
DISCONNECTED = "disconnected"


def exit_reason(close_code: int | None, leaving: bool, alive: bool) -> str:
    """Classify why a registered connection went away.

    *close_code* is None when the broker terminated the transport itself,
    which leaves the liveness flag to decide.
    """
    if close_code == CloseCode.NORMAL_CLOSURE or leaving:
        return LEFT_NORMALLY
    if close_code == CloseCode.GOING_AWAY:
        return GOING_AWAY
    if close_code == CloseCode.ABNORMAL_CLOSURE:
        return CONNECTION_LOST
    if not alive:
        return HEARTBEAT_TIMEOUT
    return DISCONNECTED


class MessageRouter:
    """Dispatch incoming envelopes and announce joins and departures."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._clock = clock or Clock()

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    async def handle(self, env: Envelope, conn: WebSocketConnection) -> None:
        """Main dispatch: route by envelope kind."""
        match env.kind:
            case "register":
                await self._on_register(env, conn)
            case "status_update":
                await self._on_status_update(env, conn)
            case "chat":
                await self._on_chat(env, conn)
            case "discovery":
                await self._on_discovery(env, conn)
            case "leaving":
                self._on_leaving(conn)
            case "who":
                await self._on_who(conn)
            case _:
                log.debug("ignoring message type: %s", env.kind)

    # ── Lifecycle ────────────────────────────────────────────────────

    def connection_opened(self, conn: WebSocketConnection) -> None:
        log.debug("connection opened: %s", conn)

    async def connection_closed(
        self, conn: WebSocketConnection, close_code: int | None, reason: str = "",
    ) -> None:
        """Drop *conn*'s record and tell everyone else why it left."""
        record = self._registry.unregister(conn)
        if record is None:
            log.debug("unregistered connection closed: %s", conn)
            return

        why = exit_reason(close_code, record.leaving, record.alive)
        duration = round((self._clock.now() - record.joined_at) / 1000)
        await self.broadcast(system_notice(
            f"{record.name} {why} (was here {duration}s)", self._clock.now(),
        ))
        await self.broadcast_participants()
        log.info(
            "- %s [%s] (code: %s, duration: %ds)%s",
            record.name, why, close_code, duration,
            f" reason: {reason}" if reason else "",
        )

    # ── Handlers ─────────────────────────────────────────────────────

    async def _on_register(self, env: Envelope, conn: WebSocketConnection) -> None:
        record = self._registry.register(
            conn, env.name, env.agent_type, self._clock.now(),
        )
        await self.broadcast(system_notice(f"{record.name} joined", self._clock.now()))
        await self.broadcast_participants()
        log.info("+ %s (%s)", record.name, record.role)

    async def _on_status_update(self, env: Envelope, conn: WebSocketConnection) -> None:
        record = self._registry.update_status(conn, env.status, env.task)
        if record is None:
            log.debug("status update from unregistered connection %s", conn)
            return
        await self.broadcast_participants()
        log.info(
            "~ %s status: %s%s",
            record.name, record.status,
            f" - {record.task}" if record.task else "",
        )

    async def _on_chat(self, env: Envelope, conn: WebSocketConnection) -> None:
        sender, role = self._sender_of(env, conn)
        await self.broadcast(chat_message(sender, role, env.text, self._clock.now()))

    async def _on_discovery(self, env: Envelope, conn: WebSocketConnection) -> None:
        if env.category == CATEGORY_LEAVING:
            self._registry.mark_leaving(conn)
        sender, role = self._sender_of(env, conn)
        await self.broadcast(discovery_message(
            sender, role, env.category, env.text, self._clock.now(),
        ))

    def _on_leaving(self, conn: WebSocketConnection) -> None:
        record = self._registry.mark_leaving(conn)
        if record is not None:
            log.debug("%s announced departure", record.name)

    async def _on_who(self, conn: WebSocketConnection) -> None:
        await conn.send(who_response(self._registry.who(), self._clock.now()))

    # ── Fan-out ──────────────────────────────────────────────────────

    async def broadcast(self, msg: dict[str, Any]) -> None:
        """Send *msg* to every registered connection, sender included."""
        for conn in self._registry.connections():
            try:
                await conn.send(msg)
            except (ConnectionResetError, BrokenPipeError):
                log.debug("send to %s failed", conn)

    async def broadcast_participants(self) -> None:
        await self.broadcast(participants_update(
            self._registry.participants(), self._clock.now(),
        ))

    # ── Helpers ──────────────────────────────────────────────────────

    def _sender_of(self, env: Envelope, conn: WebSocketConnection) -> tuple[str, str]:
        record = self._registry.get(conn)
        if record is None:
            return env.sender or UNKNOWN, UNKNOWN
        return env.sender or record.name, record.role
