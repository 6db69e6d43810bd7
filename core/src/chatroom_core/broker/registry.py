"""Connection registry: identity, status, and liveness per connection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..protocol import DEFAULT_ROLE, DEFAULT_STATUS
from ..transport import WebSocketConnection

ROLE_USER = "user"
OBSERVER_STATUS = "observer"


@dataclass
class ConnectionRecord:
    """A registered connection tracked by the broker."""

    name: str
    role: str
    joined_at: int
    conn: WebSocketConnection
    alive: bool = True
    status: str = DEFAULT_STATUS
    task: str | None = None
    leaving: bool = False


class ConnectionRegistry:
    """Maps live connections to their records.

    Only registered connections appear here; a connection that has not
    sent ``register`` yet is not part of "who is online".  Iteration
    follows registration order.
    """

    def __init__(self) -> None:
        self._records: dict[int, ConnectionRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, conn: WebSocketConnection) -> bool:
        return id(conn) in self._records

    def register(
        self,
        conn: WebSocketConnection,
        name: str,
        role: str | None,
        joined_at: int,
    ) -> ConnectionRecord:
        """Create or overwrite the record for *conn*."""
        record = ConnectionRecord(
            name=name,
            role=role or DEFAULT_ROLE,
            joined_at=joined_at,
            conn=conn,
        )
        self._records[id(conn)] = record
        return record

    def unregister(self, conn: WebSocketConnection) -> ConnectionRecord | None:
        """Remove the record for *conn*. Returns the record or None."""
        return self._records.pop(id(conn), None)

    def get(self, conn: WebSocketConnection) -> ConnectionRecord | None:
        return self._records.get(id(conn))

    def update_status(
        self,
        conn: WebSocketConnection,
        status: str | None,
        task: str | None,
    ) -> ConnectionRecord | None:
        record = self._records.get(id(conn))
        if record is not None:
            record.status = status or DEFAULT_STATUS
            record.task = task or None
        return record

    def mark_leaving(self, conn: WebSocketConnection) -> ConnectionRecord | None:
        record = self._records.get(id(conn))
        if record is not None:
            record.leaving = True
        return record

    def mark_alive(self, conn: WebSocketConnection) -> None:
        record = self._records.get(id(conn))
        if record is not None:
            record.alive = True

    def all_records(self) -> list[ConnectionRecord]:
        return list(self._records.values())

    def connections(self) -> list[WebSocketConnection]:
        return [r.conn for r in self._records.values()]

    def participants(self) -> list[dict[str, Any]]:
        """Build the presence snapshot for ``participants_update``."""
        return [
            {
                "name": r.name,
                "type": r.role,
                "status": OBSERVER_STATUS if r.role == ROLE_USER else r.status,
                "task": r.task,
                "joinedAt": r.joined_at,
            }
            for r in self._records.values()
        ]

    def who(self) -> list[dict[str, Any]]:
        """Build the online list for ``who_response``."""
        return [
            {"name": r.name, "type": r.role, "joinedAt": r.joined_at}
            for r in self._records.values()
        ]
