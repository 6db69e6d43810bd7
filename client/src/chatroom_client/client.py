"""ChatroomClient: the agent/observer side of the chatroom protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import secrets
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.frames import CloseCode
from websockets.protocol import State

from chatroom_core.protocol import (
    CATEGORY_LEAVING,
    DEFAULT_ROLE,
    MSG_CHAT,
    MSG_DISCOVERY,
    MSG_LEAVING,
    MSG_PARTICIPANTS_UPDATE,
    MSG_REGISTER,
    MSG_STATUS_UPDATE,
    MSG_WHO,
    MSG_WHO_RESPONSE,
    encode_message,
)

from .buffer import MessageBuffer

log = logging.getLogger(__name__)

DEFAULT_URL = "ws://localhost:3030"
ENV_URL = "CHATROOM_URL"

CONNECT_TIMEOUT = 5.0
MAX_RECONNECT_ATTEMPTS = 3
RECONNECT_BACKOFF = 0.5

_ANSWER_RE = re.compile(r"\[A:([a-f0-9]+)\]\s*(.*)", re.DOTALL)


class ChatroomError(RuntimeError):
    """Raised when an operation needs a joined client."""


class ChatroomClient:
    """One named participant connected to the broker.

    A background task reads every frame from the broker: ``who_response``
    replies resolve waiting `who` calls, ``participants_update`` replaces
    the cached presence list, and everything else lands in the message
    buffer.  Chat lines tagged ``[A:<id>]`` answer an outstanding `ask`.
    """

    def __init__(
        self,
        name: str,
        agent_type: str = DEFAULT_ROLE,
        url: str | None = None,
        buffer: MessageBuffer | None = None,
    ) -> None:
        if not name:
            raise ValueError("name is required")
        self.name = name
        self.agent_type = agent_type
        self.url = url or os.environ.get(ENV_URL, DEFAULT_URL)
        self.buffer = buffer if buffer is not None else MessageBuffer()
        self.participants: list[dict[str, Any]] = []
        self.last_who: list[dict[str, Any]] = []
        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._joined = False
        self._who_waiters: list[asyncio.Future[list[dict[str, Any]]]] = []
        self._questions: dict[str, asyncio.Future[str]] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    # ── lifecycle ────────────────────────────────────────────────────

    async def join(self) -> None:
        """Connect, register, and start the background reader."""
        if self.connected:
            return
        await self._drop_connection()
        self._ws = await connect(self.url, open_timeout=CONNECT_TIMEOUT)
        self._joined = True
        await self._send({
            "type": MSG_REGISTER,
            "name": self.name,
            "agentType": self.agent_type,
        })
        self._reader_task = asyncio.create_task(
            self._read_loop(self._ws), name=f"chatroom-reader-{self.name}",
        )
        log.info("joined %s as %s", self.url, self.name)

    async def ensure_connected(self) -> bool:
        """Reconnect if the connection dropped. Returns True when connected."""
        if not self._joined:
            raise ChatroomError(f"{self.name} has not joined - call join() first")
        if self.connected:
            return True
        for attempt in range(1, MAX_RECONNECT_ATTEMPTS + 1):
            try:
                await self.join()
                log.info("%s reconnected (attempt %d)", self.name, attempt)
                return True
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                log.warning("%s reconnect attempt %d failed: %s", self.name, attempt, exc)
                await asyncio.sleep(RECONNECT_BACKOFF * attempt)
        return False

    async def leave(self, announcement: str | None = None) -> None:
        """Announce the departure and close with a normal closure code."""
        if self.connected:
            try:
                if announcement:
                    await self._send({
                        "type": MSG_DISCOVERY,
                        "category": CATEGORY_LEAVING,
                        "text": announcement,
                        "from": self.name,
                    })
                await self._send({"type": MSG_LEAVING})
                await self._ws.close(code=CloseCode.NORMAL_CLOSURE, reason="leaving")
            except ConnectionClosed:
                pass
        self._joined = False
        await self._drop_connection()
        log.info("%s left", self.name)

    # ── public API ───────────────────────────────────────────────────

    async def broadcast(self, text: str, category: str | None = None) -> None:
        """Send a chat line, or a discovery when *category* is given."""
        if category:
            msg = {"type": MSG_DISCOVERY, "category": category, "text": text, "from": self.name}
        else:
            msg = {"type": MSG_CHAT, "text": text, "from": self.name}
        await self._send(msg)

    async def update_status(self, status: str, task: str | None = None) -> None:
        await self._send({"type": MSG_STATUS_UPDATE, "status": status, "task": task})

    async def who(self, timeout: float = 2.0) -> list[dict[str, Any]]:
        """Ask the broker who is online.

        Falls back to the previous answer if the broker does not reply
        within *timeout*.
        """
        await self.ensure_connected()
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[list[dict[str, Any]]] = loop.create_future()
        self._who_waiters.append(waiter)
        try:
            await self._send({"type": MSG_WHO})
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("no who_response within %ss", timeout)
            return list(self.last_who)
        finally:
            if waiter in self._who_waiters:
                self._who_waiters.remove(waiter)

    async def check(self, count: int = 10, since: int = 0) -> list[dict[str, Any]]:
        """Return buffered messages, reconnecting first if needed.

        With *since* set, every buffered message newer than that
        timestamp is returned; otherwise the last *count*.
        """
        await self.ensure_connected()
        messages = self.buffer.since(since) if since > 0 else self.buffer.recent(count)
        return [
            {
                "from": m.get("from") or "system",
                "type": m.get("type"),
                "text": m.get("text"),
                "category": m.get("category"),
                "timestamp": m.get("timestamp"),
            }
            for m in messages
        ]

    async def ask(self, question: str, timeout: float = 30.0) -> str:
        """Post a tagged question and wait for a ``[A:<id>]`` answer.

        Raises `TimeoutError` if nobody answers within *timeout*.
        """
        question_id = secrets.token_hex(4)
        loop = asyncio.get_running_loop()
        answer: asyncio.Future[str] = loop.create_future()
        self._questions[question_id] = answer
        try:
            await self._send({
                "type": MSG_CHAT,
                "text": f"[Q:{question_id}] {question}",
                "from": self.name,
            })
            return await asyncio.wait_for(answer, timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"no answer to {question_id} within {timeout}s")
        finally:
            self._questions.pop(question_id, None)

    async def answer(self, question_id: str, text: str) -> None:
        await self.broadcast(f"[A:{question_id}] {text}")

    # ── internals ────────────────────────────────────────────────────

    async def _send(self, msg: dict[str, Any]) -> None:
        if not self.connected:
            raise ChatroomError(f"{self.name} is not connected")
        await self._ws.send(encode_message(msg))

    async def _drop_connection(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._ws is not None:
            self._ws.transport.abort()
            self._ws = None

    async def _read_loop(self, ws: ClientConnection) -> None:
        """Background task: decode frames and dispatch them."""
        try:
            async for frame in ws:
                try:
                    msg = json.loads(frame)
                except json.JSONDecodeError:
                    log.warning("ignoring undecodable frame")
                    continue
                if isinstance(msg, dict):
                    self._dispatch_incoming(msg)
        except ConnectionClosed:
            pass
        finally:
            log.debug("%s reader stopped", self.name)

    def _dispatch_incoming(self, msg: dict[str, Any]) -> None:
        """Route one broker message to waiters, caches, or the buffer."""
        kind = msg.get("type")
        if kind == MSG_WHO_RESPONSE:
            self.last_who = msg.get("clients") or []
            for waiter in self._who_waiters:
                if not waiter.done():
                    waiter.set_result(list(self.last_who))
            self._who_waiters.clear()
            return

        if kind == MSG_PARTICIPANTS_UPDATE:
            self.participants = msg.get("participants") or []
            return

        self.buffer.add(msg)

        text = msg.get("text")
        if kind == MSG_CHAT and isinstance(text, str) and msg.get("from") != self.name:
            match = _ANSWER_RE.search(text)
            if match:
                question_id, reply = match.groups()
                pending = self._questions.get(question_id)
                if pending is not None and not pending.done():
                    pending.set_result(reply)
