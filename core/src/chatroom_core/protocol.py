"""Chatroom wire protocol: message kinds, envelope decoding, and builders."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable

# ── Client → broker kinds ───────────────────────────────────────────

MSG_REGISTER = "register"
MSG_STATUS_UPDATE = "status_update"
MSG_CHAT = "chat"
MSG_DISCOVERY = "discovery"
MSG_LEAVING = "leaving"
MSG_WHO = "who"

# ── Broker → client kinds ───────────────────────────────────────────

MSG_SYSTEM = "system"
MSG_PARTICIPANTS_UPDATE = "participants_update"
MSG_WHO_RESPONSE = "who_response"

CLIENT_KINDS = frozenset({
    MSG_REGISTER,
    MSG_STATUS_UPDATE,
    MSG_CHAT,
    MSG_DISCOVERY,
    MSG_LEAVING,
    MSG_WHO,
})

# Discovery category that doubles as a departure announcement.
CATEGORY_LEAVING = "leaving"

DEFAULT_ROLE = "agent"
DEFAULT_STATUS = "idle"
UNKNOWN = "unknown"

# ── Errors ──────────────────────────────────────────────────────────


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded into an envelope."""


# ── Envelope ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Envelope:
    """A decoded client frame.

    The *sender* field maps to the ``"from"`` key on the wire and
    *agent_type* to ``"agentType"``.
    """

    kind: str
    text: str | None = None
    sender: str | None = None
    category: str | None = None
    name: str | None = None
    agent_type: str | None = None
    status: str | None = None
    task: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def decode_envelope(frame: str | bytes) -> Envelope:
    """Deserialize one frame into an `Envelope`.

    Raises `ProtocolError` on invalid input.
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode()
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"invalid UTF-8: {exc}") from exc

    try:
        data = json.loads(frame)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise ProtocolError("missing message type")
    if kind not in CLIENT_KINDS:
        raise ProtocolError(f"unknown message type: {kind}")

    name = data.get("name")
    if kind == MSG_REGISTER and (not isinstance(name, str) or not name):
        raise ProtocolError("register requires a name")

    return Envelope(
        kind=kind,
        text=data.get("text"),
        sender=data.get("from"),
        category=data.get("category"),
        name=name,
        agent_type=data.get("agentType"),
        status=data.get("status"),
        task=data.get("task"),
        raw=data,
    )


def encode_message(msg: dict[str, Any]) -> str:
    """Serialize a broker message to a single JSON frame."""
    return json.dumps(msg, separators=(",", ":"))


# ── Timestamps ──────────────────────────────────────────────────────


class Clock:
    """Millisecond wall clock that never runs backwards.

    Every message the broker emits is stamped at receipt; consumers use
    the stamp for ordering and de-duplication, so successive readings
    must be non-decreasing even if the system clock steps back.
    """

    def __init__(self, time_fn: Callable[[], float] = time.time) -> None:
        self._time_fn = time_fn
        self._last = 0

    def now(self) -> int:
        ts = int(self._time_fn() * 1000)
        if ts < self._last:
            ts = self._last
        self._last = ts
        return ts


# ── Broker message builders ─────────────────────────────────────────


def system_notice(text: str, timestamp: int) -> dict[str, Any]:
    return {"type": MSG_SYSTEM, "text": text, "timestamp": timestamp}


def chat_message(
    sender: str, agent_type: str, text: Any, timestamp: int,
) -> dict[str, Any]:
    return {
        "type": MSG_CHAT,
        "from": sender,
        "agentType": agent_type,
        "text": text,
        "timestamp": timestamp,
    }


def discovery_message(
    sender: str,
    agent_type: str,
    category: str | None,
    text: Any,
    timestamp: int,
) -> dict[str, Any]:
    return {
        "type": MSG_DISCOVERY,
        "from": sender,
        "agentType": agent_type,
        "category": category,
        "text": text,
        "timestamp": timestamp,
    }


def participants_update(
    participants: list[dict[str, Any]], timestamp: int,
) -> dict[str, Any]:
    return {
        "type": MSG_PARTICIPANTS_UPDATE,
        "participants": participants,
        "timestamp": timestamp,
    }


def who_response(clients: list[dict[str, Any]], timestamp: int) -> dict[str, Any]:
    return {"type": MSG_WHO_RESPONSE, "clients": clients, "timestamp": timestamp}
