"""Heartbeat: ping registered connections and evict the silent ones."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from ..transport import WebSocketConnection

from .registry import ConnectionRegistry

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 5.0


class HeartbeatMonitor:
    """Probe every registered connection once per *interval*.

    Each tick clears a connection's liveness flag and sends a ping; the
    matching pong sets the flag again.  A connection whose flag is still
    clear at the next tick missed a whole interval and is terminated,
    which runs the normal close path and announces a heartbeat timeout.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = HEARTBEAT_INTERVAL,
    ) -> None:
        self._registry = registry
        self._interval = interval

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.tick()

    async def tick(self) -> None:
        for record in self._registry.all_records():
            if not record.alive:
                log.warning("! %s (no heartbeat response, terminating)", record.name)
                record.conn.terminate()
                continue
            record.alive = False
            waiter = await record.conn.ping()
            if waiter is not None:
                waiter.add_done_callback(partial(self._on_pong, record.conn))

    def _on_pong(self, conn: WebSocketConnection, waiter: asyncio.Future) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self._registry.mark_alive(conn)
