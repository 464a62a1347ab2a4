"""Websocket side of the companion.

- connection: opening the socket to the developer tool
- reconnect: connection attempts with exponential backoff
- notifications: notices surfaced to the user
- manager: the connection manager that owns the socket and answers requests
"""

from devcompanion.client.connection import open_connection
from devcompanion.client.manager import ConnectionManager, ConnectionState
from devcompanion.client.notifications import LoggingNotifier, Notification, Notifier
from devcompanion.client.reconnect import connect_with_backoff

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "connect_with_backoff",
    "open_connection",
]
