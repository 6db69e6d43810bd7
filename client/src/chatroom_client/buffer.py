"""Shared, de-duplicated buffer of recent chatroom messages."""

from __future__ import annotations

from collections import deque
from typing import Any

MAX_MESSAGES = 100


def _identity(msg: dict[str, Any]) -> tuple[Any, Any, Any]:
    return (msg.get("timestamp"), msg.get("from"), msg.get("text"))


class MessageBuffer:
    """Keeps the last *capacity* messages, oldest first.

    A message re-delivered after a reconnect carries the same broker
    timestamp, so two messages with equal ``(timestamp, from, text)`` are
    stored once.  Several clients in one process may share a buffer.
    """

    def __init__(self, capacity: int = MAX_MESSAGES) -> None:
        self._messages: deque[dict[str, Any]] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, msg: dict[str, Any]) -> bool:
        """Append *msg* unless an identical one is buffered. Returns True if added."""
        key = _identity(msg)
        if any(_identity(m) == key for m in self._messages):
            return False
        self._messages.append(msg)
        return True

    def recent(self, count: int = 10) -> list[dict[str, Any]]:
        if count <= 0:
            return []
        return list(self._messages)[-count:]

    def since(self, timestamp: int) -> list[dict[str, Any]]:
        return [m for m in self._messages if (m.get("timestamp") or 0) > timestamp]

    def clear(self) -> None:
        self._messages.clear()
