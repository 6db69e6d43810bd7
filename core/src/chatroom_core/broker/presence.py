"""Periodic participants snapshot."""

from __future__ import annotations

import asyncio
import logging

from .router import MessageRouter

log = logging.getLogger(__name__)

PARTICIPANTS_INTERVAL = 5.0


class PresenceRefresher:
    """Re-broadcast the participants snapshot every *interval* seconds.

    Status and task changes propagate even without a triggering event,
    and clients that missed a broadcast converge within one interval.
    Nothing is sent while nobody is registered.
    """

    def __init__(
        self,
        router: MessageRouter,
        interval: float = PARTICIPANTS_INTERVAL,
    ) -> None:
        self._router = router
        self._interval = interval

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.tick()

    async def tick(self) -> None:
        if len(self._router.registry) == 0:
            return
        log.debug("refreshing participants (%d)", len(self._router.registry))
        await self._router.broadcast_participants()
