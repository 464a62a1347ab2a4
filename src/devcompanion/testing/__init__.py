"""Testing utilities for the companion.

Provides fakes and a loopback peer for protocol and connection tests.
"""

from .fakes import FakeWebSocket, RecordingNotifier
from .server import PeerServer

__all__ = ["FakeWebSocket", "PeerServer", "RecordingNotifier"]
