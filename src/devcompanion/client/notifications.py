"""User-visible notices raised by the connection manager.

The host's notification UI is not part of the companion; it plugs in
through the :class:`Notifier` protocol. :class:`LoggingNotifier` is the
fallback when no UI is attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

__all__ = ["Notification", "Notifier", "LoggingNotifier"]


@dataclass(frozen=True)
class Notification:
    """A dismissible notice.

    Attributes:
        title: Short heading.
        body: Detail text.
        error: Render as an error (red) notice.
        on_click: Called when the user acknowledges the notice.
    """

    title: str
    body: str
    error: bool = False
    on_click: Callable[[], None] | None = None


@runtime_checkable
class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Notifier that only writes notices to the log."""

    def notify(self, notification: Notification) -> None:
        level = logging.ERROR if notification.error else logging.INFO
        logger.log(level, f"{notification.title}: {notification.body}")
