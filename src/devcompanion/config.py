"""Configuration for the companion connection.

Frozen dataclasses hold every tunable value. The ``resolve_*`` helpers apply
the usual priority: explicit flag > ``DEVCOMPANION_*`` env var > default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

__all__ = [
    "ReconnectConfig",
    "CompanionSettings",
    "DEFAULT_RECONNECT",
    "DEFAULT_SETTINGS",
    "resolve_settings",
]

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ReconnectConfig:
    """Backoff used when an automatic connection attempt fails.

    Attributes:
        initial_delay: First retry delay in seconds.
        max_delay: Maximum retry delay in seconds.
        backoff_factor: Multiplier applied to delay after each failure.
        max_retries: Maximum number of connection attempts (0 = unlimited).
        jitter: If True, add random jitter to avoid thundering herd.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    max_retries: int = 10
    jitter: bool = True


#: Default reconnection config used when none is specified.
DEFAULT_RECONNECT = ReconnectConfig()


@dataclass(frozen=True)
class CompanionSettings:
    """Settings for one companion session.

    Attributes:
        host: Host the developer tool listens on. Only localhost is trusted.
        port: Port the developer tool listens on.
        notify_on_auto_connect: Show the "connected" notice for automatic
            connects. Manual connects always show it.
        reconnect_delay: Seconds to wait after a disconnect notice is
            acknowledged before reconnecting.
        plugin_name: Name substituted for ``$self`` in replacements.
        allow_code_evaluation: Whether ``function`` nodes may be evaluated.
        open_timeout: Websocket opening handshake timeout in seconds.
        reconnect: Backoff for automatic connection attempts.
    """

    host: str = "localhost"
    port: int = 8485
    notify_on_auto_connect: bool = True
    reconnect_delay: float = 2.5
    plugin_name: str = "PlaceHolderPluginName"
    allow_code_evaluation: bool = True
    open_timeout: float = 10.0
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


DEFAULT_SETTINGS = CompanionSettings()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def resolve_settings(
    host: str | None = None,
    port: int | None = None,
    allow_code_evaluation: bool | None = None,
    base: CompanionSettings = DEFAULT_SETTINGS,
) -> CompanionSettings:
    """Build settings from CLI flags, environment and defaults.

    Priority: flag > DEVCOMPANION_* env var > ``base``.

    Raises:
        ValueError: If DEVCOMPANION_PORT is not an integer.
    """
    if host is None:
        host = os.getenv("DEVCOMPANION_HOST", base.host)
    if port is None:
        env_port = os.getenv("DEVCOMPANION_PORT")
        port = int(env_port) if env_port else base.port
    if allow_code_evaluation is None:
        allow_code_evaluation = _env_flag(
            "DEVCOMPANION_ALLOW_EVAL", base.allow_code_evaluation
        )
    notify = _env_flag(
        "DEVCOMPANION_NOTIFY_ON_AUTO_CONNECT", base.notify_on_auto_connect
    )
    return replace(
        base,
        host=host,
        port=port,
        allow_code_evaluation=allow_code_evaluation,
        notify_on_auto_connect=notify,
    )
