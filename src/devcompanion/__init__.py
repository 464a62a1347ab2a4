"""devcompanion: lets a developer tool inspect a running bundle's modules over a websocket.

This package provides:
- The request/reply protocol (extract, testFind, testPatch)
- A connection manager that keeps the socket to the developer tool
- An in-memory module registry for running against a saved bundle
- Testing utilities (fake websocket, recording notifier, loopback peer)
"""

from devcompanion.client import ConnectionManager, Notification, Notifier
from devcompanion.config import CompanionSettings, ReconnectConfig
from devcompanion.host import InMemoryRegistry, ModuleRegistry
from devcompanion.protocol import CodeEvaluator, CommandHandler

__all__ = [
    "CodeEvaluator",
    "CommandHandler",
    "CompanionSettings",
    "ConnectionManager",
    "InMemoryRegistry",
    "ModuleRegistry",
    "Notification",
    "Notifier",
    "ReconnectConfig",
]
__version__ = "0.1.0"
