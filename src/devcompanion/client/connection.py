"""Low-level websocket connection to the developer tool."""

from __future__ import annotations

import logging

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

__all__ = ["open_connection", "CONNECT_ERRORS"]

#: Exceptions that mean "the peer is not there (yet)".
CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    websockets.exceptions.WebSocketException,
)


async def open_connection(url: str, open_timeout: float = 10.0) -> ClientConnection:
    """Open a websocket to the developer tool.

    Args:
        url: WebSocket URL (e.g., ws://localhost:8485)
        open_timeout: Opening handshake timeout in seconds.

    Returns:
        Connected WebSocket client

    Raises:
        OSError: If the TCP connection fails or times out.
        websockets.exceptions.WebSocketException: If the handshake fails.
    """
    logger.debug(f"Connecting to {url}")
    websocket = await websockets.connect(url, open_timeout=open_timeout)
    logger.info(f"Connected to {url}")
    return websocket
