"""asyncio adapters for the simlink core.

WebSocketTransport implements the Transport protocol on top of the
``websockets`` asyncio client. LoopScheduler implements the Scheduler
protocol on the running event loop.

Each transport runs two tasks while connected:
- reader: forwards every inbound frame to the listener
- writer: drains the outbox, so frames leave in submission order

Close codes follow the browser WebSocket API: a connection that fails to
open, or drops without a close frame, reports 1006 (abnormal closure) after
an error event.

"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from functools import partial
from typing import TYPE_CHECKING

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from simlink.constants import SimConstants as c
from simlink.exceptions import SimTransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from simlink.protocols import TransportFactory, TransportListener
    from simlink.settings import SimSettings

log = logging.getLogger(__name__)

_ABNORMAL = c.Network.CloseCode.ABNORMAL


class WebSocketTransport:
    """Single-use WebSocket connection with browser-like event semantics."""

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = c.Network.OPEN_TIMEOUT,
        max_size: int = c.Network.MAX_MESSAGE_SIZE,
    ) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._max_size = max_size
        self._listener: TransportListener | None = None
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        self._closing = False
        self._close_code: int = c.Network.CloseCode.NORMAL

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closing" if self._closing else "idle"
        return f"<WebSocketTransport {self._url} {state}>"

    @property
    def url(self) -> str:
        """Endpoint URL."""
        return self._url

    @property
    def is_open(self) -> bool:
        """Check if frames can be sent."""
        return self._ws is not None and not self._closing

    def bind(self, listener: TransportListener | None) -> None:
        """Attach the listener that receives this transport's events."""
        self._listener = listener

    def open(self) -> None:
        """Start the connection task on the running loop."""
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"simlink {self._url}")

    def send(self, data: str) -> None:
        """Queue one text frame for the writer task.

        Raises:
            SimTransportError: Not connected, or closing.

        """
        if not self.is_open:
            raise SimTransportError(details={"url": self._url})
        self._outbox.put_nowait(data)

    def close(self, code: int = c.Network.CloseCode.NORMAL) -> None:
        """Start a closing handshake, or abort a pending connect."""
        if self._closing:
            return
        self._closing = True
        self._close_code = code

        if self._ws is not None:
            self._close_task = asyncio.get_running_loop().create_task(
                self._drain_and_close(self._ws, code)
            )
        elif self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait until the connection task has finished."""
        if self._task is None:
            return
        with suppress(asyncio.CancelledError):
            await self._task
        if self._close_task is not None:
            with suppress(ConnectionClosed):
                await self._close_task

    # =========================================================================
    # TASKS
    # =========================================================================

    async def _run(self) -> None:
        try:
            ws = await connect(
                self._url,
                open_timeout=self._open_timeout,
                max_size=self._max_size,
            )
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            log.warning("Connection to %s failed: %s", self._url, e)
            self._emit("on_error", e)
            self._emit("on_close", _ABNORMAL)
            return

        if self._closing:
            await ws.close(self._close_code)
            return

        self._ws = ws
        log.debug("Connected to %s", self._url)
        self._emit("on_open")

        writer = asyncio.get_running_loop().create_task(self._write_loop(ws))
        try:
            async for frame in ws:
                self._emit("on_message", frame)
        except ConnectionClosed:
            pass
        finally:
            writer.cancel()
            self._ws = None

        await ws.wait_closed()
        code = ws.close_code if ws.close_code is not None else _ABNORMAL
        log.debug("Connection to %s closed (code %d)", self._url, code)
        if code == _ABNORMAL:
            self._emit("on_error", None)
        self._emit("on_close", code)

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await ws.send(data)
            except ConnectionClosed:
                log.debug("Dropped frame for %s: connection closed", self._url)
                return
            finally:
                self._outbox.task_done()

    async def _drain_and_close(self, ws: ClientConnection, code: int) -> None:
        # Frames queued before close() still go out
        with suppress(TimeoutError):
            await asyncio.wait_for(self._outbox.join(), timeout=self._open_timeout)
        await ws.close(code)

    def _emit(self, event: str, *args: object) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            getattr(listener, event)(*args)
        except Exception:
            log.exception("Listener failed handling %s from %s", event, self._url)


def websocket_factory(settings: SimSettings) -> TransportFactory:
    """Return a TransportFactory creating WebSocketTransports from settings."""
    return partial(
        WebSocketTransport,
        open_timeout=settings.open_timeout,
        max_size=settings.max_message_size,
    )


# =============================================================================
# EVENT LOOP
# =============================================================================


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def call_later(
        self, delay: float, callback: Callable[[], object]
    ) -> asyncio.TimerHandle:
        """Schedule ``callback`` on the running loop."""
        return asyncio.get_running_loop().call_later(delay, callback)
