"""Connection manager: owns the socket to the developer tool.

Lifecycle of one session::

    DISCONNECTED --connect()--> CONNECTING --open--> OPEN --close--> DISCONNECTED
                                                      |
                                                      +--error--> ERRORED --> DISCONNECTED

Frames are handled one at a time on the event loop: a request is decoded,
handled to completion, and its reply sent before the next frame is read.
Sends are fire-and-forget; correlation with the peer is by nonce only.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from devcompanion.client.connection import CONNECT_ERRORS, open_connection
from devcompanion.client.notifications import LoggingNotifier, Notification, Notifier
from devcompanion.client.reconnect import connect_with_backoff
from devcompanion.config import DEFAULT_SETTINGS, CompanionSettings
from devcompanion.host.registry import ModuleRegistry
from devcompanion.protocol.commands import CommandHandler
from devcompanion.protocol.schema import encode_reply

logger = logging.getLogger(__name__)

__all__ = ["ConnectionManager", "ConnectionState"]

NORMAL_CLOSURE = 1000


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    ERRORED = "errored"


@dataclass
class _Session:
    """Per-connection flags.

    ``was_connected`` is sticky once the socket opened; a manual connect
    starts with it set so its failures are reported.
    """

    manual: bool
    was_connected: bool
    has_errored: bool = False
    superseded: bool = False
    websocket: ClientConnection | None = None


class ConnectionManager:
    """Keeps one websocket to the developer tool and answers its requests.

    Args:
        registry: Host module registry the commands inspect.
        settings: Endpoint, notification and reconnect settings.
        notifier: Sink for user-visible notices. Defaults to logging only.
        handler: Command handler. Defaults to one built from ``registry``.

    Example:
        manager = ConnectionManager(registry)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        settings: CompanionSettings = DEFAULT_SETTINGS,
        notifier: Notifier | None = None,
        handler: CommandHandler | None = None,
    ) -> None:
        self._settings = settings
        self._handler = handler or CommandHandler(registry, settings)
        self._notifier = notifier or LoggingNotifier()
        self._session: _Session | None = None
        self._task: asyncio.Task[None] | None = None
        self._scheduled: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._stopped = asyncio.Event()
        self.state = ConnectionState.DISCONNECTED

    @property
    def running(self) -> bool:
        return self._running

    @property
    def websocket(self) -> ClientConnection | None:
        """The live socket, if a session is open."""
        return self._session.websocket if self._session else None

    @property
    def task(self) -> asyncio.Task[None] | None:
        """Task running the current session."""
        return self._task

    # Lifecycle

    async def start(self) -> None:
        """Begin connecting. Automatic connects retry quietly with backoff.

        Does nothing while a session is already live.
        """
        if self._running and self._has_live_session():
            logger.debug("start() called while a session is live; ignoring")
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._stopped.clear()
        self.connect()

    async def stop(self) -> None:
        """Close the socket and forget it; no reconnect happens until start()."""
        self._running = False
        for task in list(self._scheduled):
            task.cancel()
        await self._close_current("Companion Stopped")
        self._session = None
        self._task = None
        self.state = ConnectionState.DISCONNECTED
        self._stopped.set()
        logger.info("Companion stopped")

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def connect(self, manual: bool = False) -> asyncio.Task[None]:
        """Start a new session.

        Only one session is live at a time. To replace a live session use
        :meth:`reconnect`, which closes it first.

        Args:
            manual: The user asked for this connection. Manual connects make a
                single attempt, always show the "connected" notice, and report
                failures.

        Raises:
            RuntimeError: If the manager has not been started, or a session
                is already connecting or open.
        """
        if not self._running:
            raise RuntimeError("ConnectionManager is not running; call start() first")
        if self._has_live_session():
            raise RuntimeError("ConnectionManager already has a live session; use reconnect()")
        session = _Session(manual=manual, was_connected=manual)
        self._session = session
        self._task = asyncio.get_running_loop().create_task(self._run(session))
        return self._task

    async def reconnect(self) -> asyncio.Task[None]:
        """Close any existing socket normally and connect again as a manual connect."""
        await self._close_current("Reconnecting")
        return self.connect(manual=True)

    def _has_live_session(self) -> bool:
        if self._session is None or self._session.superseded:
            return False
        return self._task is not None and not self._task.done()

    async def _close_current(self, reason: str) -> None:
        session, task = self._session, self._task
        if session is None:
            return
        session.superseded = True
        if session.websocket is not None:
            self.state = ConnectionState.CLOSING
            await session.websocket.close(NORMAL_CLOSURE, reason)
        elif task is not None:
            task.cancel()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # Session

    async def _run(self, session: _Session) -> None:
        self._set_state(session, ConnectionState.CONNECTING)
        url = self._settings.url
        try:
            if session.manual:
                websocket = await open_connection(url, open_timeout=self._settings.open_timeout)
            else:
                websocket = await connect_with_backoff(
                    url,
                    self._settings.reconnect,
                    open_timeout=self._settings.open_timeout,
                )
        except CONNECT_ERRORS as exc:
            self._on_error(session, exc)
            self._set_state(session, ConnectionState.DISCONNECTED)
            return

        session.websocket = websocket
        if session.superseded:
            await websocket.close(NORMAL_CLOSURE, "Superseded")
            return

        try:
            await self._on_open(session, websocket)
            while True:
                frame = await websocket.recv()
                reply = self._handler.handle_frame(frame)
                if reply is not None:
                    await websocket.send(reply)
        except ConnectionClosedOK as exc:
            self._on_close(session, exc.rcvd)
        except ConnectionClosedError as exc:
            self._on_error(session, exc)
            self._on_close(session, exc.rcvd)
        finally:
            session.websocket = None

    async def _on_open(self, session: _Session, websocket: ClientConnection) -> None:
        session.was_connected = True
        self._set_state(session, ConnectionState.OPEN)
        logger.info("Connected to WebSocket")

        await websocket.send(encode_reply(self._handler.module_list()))

        if self._settings.notify_on_auto_connect or session.manual:
            self._notifier.notify(
                Notification(title="Dev Companion Connected", body="Connected to WebSocket")
            )

    def _on_error(self, session: _Session, exc: BaseException) -> None:
        if not session.was_connected:
            logger.debug(f"Initial connection failed: {exc}")
            return
        session.has_errored = True
        self._set_state(session, ConnectionState.ERRORED)
        logger.error(f"Dev Companion Error: {exc}")
        self._notifier.notify(
            Notification(
                title="Dev Companion Error",
                body=str(exc) or "No Error Message",
                error=True,
            )
        )

    def _on_close(self, session: _Session, close: Close | None) -> None:
        self._set_state(session, ConnectionState.DISCONNECTED)
        if not session.was_connected or session.has_errored:
            return
        code = close.code if close else None
        reason = close.reason if close else ""
        if session.superseded or not self._running:
            logger.info(f"Closed connection: {code} {reason}")
            return
        logger.info(f"Dev Companion Disconnected: {code} {reason}")
        self._notifier.notify(
            Notification(
                title="Dev Companion Disconnected",
                body=reason or "No Reason provided",
                error=True,
                on_click=self._request_reconnect,
            )
        )

    def _set_state(self, session: _Session, state: ConnectionState) -> None:
        if session is self._session:
            self.state = state

    # Reconnect after a disconnect notice is acknowledged

    def _request_reconnect(self) -> None:
        """Notice callback; safe to call from any thread."""
        if self._loop is None or not self._running:
            return
        self._loop.call_soon_threadsafe(self._schedule_reconnect)

    def _schedule_reconnect(self) -> None:
        if not self._running:
            return
        task = asyncio.get_running_loop().create_task(self._delayed_reconnect())
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)

    async def _delayed_reconnect(self) -> None:
        await asyncio.sleep(self._settings.reconnect_delay)
        if self._running:
            await self.reconnect()
