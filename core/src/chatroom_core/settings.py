"""Broker settings: defaults, overridden by environment, then CLI flags."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3030

ENV_HOST = "CHATROOM_HOST"
ENV_PORT = "CHATROOM_PORT"
ENV_HEARTBEAT_INTERVAL = "CHATROOM_HEARTBEAT_INTERVAL"
ENV_PARTICIPANTS_INTERVAL = "CHATROOM_PARTICIPANTS_INTERVAL"


@dataclass(frozen=True)
class BrokerSettings:
    """Listener address and timer intervals for one broker process.

    Usage:
        settings = BrokerSettings.from_env()
        settings = settings.override(port=4040)
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    heartbeat_interval: float = 5.0
    participants_interval: float = 5.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> BrokerSettings:
        """Build settings from ``CHATROOM_*`` variables, falling back to defaults."""
        env = os.environ if env is None else env
        settings = cls()
        values: dict[str, Any] = {}
        if env.get(ENV_HOST):
            values["host"] = env[ENV_HOST]
        if env.get(ENV_PORT):
            values["port"] = _parse(env, ENV_PORT, int)
        if env.get(ENV_HEARTBEAT_INTERVAL):
            values["heartbeat_interval"] = _parse(env, ENV_HEARTBEAT_INTERVAL, float)
        if env.get(ENV_PARTICIPANTS_INTERVAL):
            values["participants_interval"] = _parse(env, ENV_PARTICIPANTS_INTERVAL, float)
        return replace(settings, **values).validated()

    def override(self, **values: Any) -> BrokerSettings:
        """Return a copy with every non-None value in *values* applied."""
        values = {k: v for k, v in values.items() if v is not None}
        return replace(self, **values).validated()

    def validated(self) -> BrokerSettings:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        if self.participants_interval <= 0:
            raise ValueError("participants interval must be positive")
        return self


def _parse(env: Mapping[str, str], key: str, cast: type) -> Any:
    raw = env[key]
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"invalid {key}: {raw!r}") from exc
