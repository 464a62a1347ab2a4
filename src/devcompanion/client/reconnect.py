"""Connection attempts with exponential backoff.

Automatic connects go through :func:`connect_with_backoff` so a companion
started before the developer tool keeps trying quietly until the tool
comes up or the retry budget runs out.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable

from websockets.asyncio.client import ClientConnection

from devcompanion.client.connection import CONNECT_ERRORS, open_connection
from devcompanion.config import DEFAULT_RECONNECT, ReconnectConfig

logger = logging.getLogger(__name__)

__all__ = ["connect_with_backoff", "backoff_delay", "StateCallback"]

#: Callback type for state change notifications.
StateCallback = Callable[[str], None]


def backoff_delay(config: ReconnectConfig, delay: float) -> float:
    """Delay to sleep before the next attempt, given the current base delay."""
    actual_delay = min(delay, config.max_delay)
    if config.jitter:
        actual_delay *= 0.5 + random.random() * 0.5  # 50%-100% of delay
    return actual_delay


def _emit(on_state_change: StateCallback | None, state: str) -> None:
    if on_state_change is None:
        return
    try:
        on_state_change(state)
    except Exception as exc:
        logger.warning(f"on_state_change error: {exc}")


async def connect_with_backoff(
    url: str,
    config: ReconnectConfig | None = None,
    on_state_change: StateCallback | None = None,
    open_timeout: float = 10.0,
) -> ClientConnection:
    """Open a websocket, retrying with exponential backoff on failure.

    Args:
        url: WebSocket URL of the developer tool.
        config: Backoff configuration. Defaults to DEFAULT_RECONNECT.
        on_state_change: Optional callback(state_str) for state transitions.
                         States: "connecting", "connected", "reconnecting", "failed"
        open_timeout: Opening handshake timeout per attempt.

    Returns:
        The connected websocket.

    Raises:
        ConnectionError: If max_retries attempts all failed.
    """
    if config is None:
        config = DEFAULT_RECONNECT

    attempt = 0
    delay = config.initial_delay

    while True:
        state = "connecting" if attempt == 0 else "reconnecting"
        logger.debug(f"Connection state: {state} (attempt {attempt + 1})")
        _emit(on_state_change, state)

        try:
            websocket = await open_connection(url, open_timeout=open_timeout)
        except CONNECT_ERRORS as exc:
            attempt += 1
            logger.debug(f"Connection failed (attempt {attempt}): {exc}")

            # Check max retries (0 = unlimited)
            if config.max_retries > 0 and attempt >= config.max_retries:
                logger.info(f"Giving up on {url} after {attempt} attempts")
                _emit(on_state_change, "failed")
                raise ConnectionError(
                    f"Failed to connect to {url} after {attempt} attempts: {exc}"
                ) from exc

            actual_delay = backoff_delay(config, delay)
            logger.debug(f"Retrying in {actual_delay:.1f}s...")
            await asyncio.sleep(actual_delay)

            delay = min(delay * config.backoff_factor, config.max_delay)
            continue

        _emit(on_state_change, "connected")
        return websocket
