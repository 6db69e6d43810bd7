"""Entry point for the chatroom broker process."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .broker.heartbeat import HeartbeatMonitor
from .broker.presence import PresenceRefresher
from .broker.registry import ConnectionRegistry
from .broker.router import MessageRouter
from .settings import BrokerSettings
from .transport import WebSocketServer

log = logging.getLogger(__name__)


class Broker:
    """Top-level orchestrator that owns the registry, router, and timers.

    The registry lives exactly as long as the listener: it is created
    here, filled by the router while the server runs, and dropped on
    shutdown.
    """

    def __init__(self, settings: BrokerSettings | None = None) -> None:
        self.settings = settings or BrokerSettings()
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.registry)
        self.heartbeat = HeartbeatMonitor(
            self.registry, interval=self.settings.heartbeat_interval,
        )
        self.presence = PresenceRefresher(
            self.router, interval=self.settings.participants_interval,
        )
        self._server = WebSocketServer(
            self.router.handle,
            on_close=self.router.connection_closed,
            on_open=self.router.connection_opened,
            host=self.settings.host,
            port=self.settings.port,
        )
        self._tasks: list[asyncio.Task] = []

    @property
    def port(self) -> int:
        return self._server.port

    async def start(self) -> None:
        """Bind the listener and start both timers.

        Raises `OSError` if the address cannot be bound.
        """
        await self._server.start()
        self._tasks = [
            asyncio.create_task(self.heartbeat.run(), name="heartbeat"),
            asyncio.create_task(self.presence.run(), name="presence"),
        ]
        log.info("broker started")

    async def run(self) -> None:
        """Start and serve until cancelled."""
        await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            log.info("broker shutting down")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self._server.stop()
        log.info("broker stopped")


async def _serve(broker: Broker) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except NotImplementedError:
            pass
    await broker.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent chatroom broker")
    parser.add_argument(
        "--host", default=None,
        help="Listen address (default: $CHATROOM_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Listen port (default: $CHATROOM_PORT or 3030)",
    )
    parser.add_argument(
        "--heartbeat-interval", type=float, default=None,
        help="Seconds between heartbeat probes (default: 5)",
    )
    parser.add_argument(
        "--participants-interval", type=float, default=None,
        help="Seconds between participant snapshots (default: 5)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = BrokerSettings.from_env().override(
            host=args.host,
            port=args.port,
            heartbeat_interval=args.heartbeat_interval,
            participants_interval=args.participants_interval,
        )
    except ValueError as exc:
        log.error("invalid configuration: %s", exc)
        sys.exit(2)

    broker = Broker(settings)
    try:
        asyncio.run(_serve(broker))
    except OSError as exc:
        log.error(
            "cannot listen on %s:%d: %s", settings.host, settings.port, exc,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
