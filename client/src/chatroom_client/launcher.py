"""Start a broker process when none is listening."""

from __future__ import annotations

import logging
import signal
import socket
import subprocess
import sys
import time

from chatroom_core.settings import DEFAULT_HOST, DEFAULT_PORT

log = logging.getLogger(__name__)

BROKER_POLL_INTERVAL = 0.2
BROKER_POLL_TIMEOUT = 5.0


class BrokerLauncher:
    """Probe for a running broker and start one if needed."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self.host = host
        self.port = port
        self._processes: list[subprocess.Popen] = []

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def broker_running(self) -> bool:
        """Check whether something accepts TCP connections on host:port."""
        try:
            with socket.create_connection((self.host, self.port), timeout=1.0):
                return True
        except OSError:
            return False

    def ensure_running(self) -> bool:
        """Start a broker unless one is reachable. Returns True if started."""
        if self.broker_running():
            log.info("broker already listening on %s", self.url)
            return False
        self.start_broker()
        return True

    def start_broker(self) -> None:
        """Start the broker as a subprocess and wait until it is ready."""
        args = [
            sys.executable, "-m", "chatroom_core.main",
            "--host", self.host, "--port", str(self.port),
        ]
        proc = subprocess.Popen(
            args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        self._processes.append(proc)
        log.info("started broker (pid %d)", proc.pid)

        deadline = time.monotonic() + BROKER_POLL_TIMEOUT
        while time.monotonic() < deadline:
            if self.broker_running():
                log.info("broker ready on %s", self.url)
                return
            if proc.poll() is not None:
                raise RuntimeError(
                    f"broker exited immediately with code {proc.returncode}"
                )
            time.sleep(BROKER_POLL_INTERVAL)

        raise TimeoutError("broker did not become ready in time")

    def shutdown(self) -> None:
        """Terminate every broker this launcher started."""
        for proc in reversed(self._processes):
            if proc.poll() is None:
                log.info("terminating pid %d", proc.pid)
                proc.send_signal(signal.SIGTERM)

        for proc in self._processes:
            try:
                proc.wait(timeout=3.0)
            except subprocess.TimeoutExpired:
                log.warning("killing pid %d", proc.pid)
                proc.kill()

        self._processes.clear()
