"""Protocol definitions for the collaborators of the simlink core.

The session state machine never touches a socket or an event loop directly.
It talks to:

- Transport: one full-duplex message connection (open/send/close)
- TransportListener: receives the transport's events
- Scheduler / TimerHandle: delayed callbacks (reconnect, reload, throttles)

Any object with the right shape satisfies these; the WebSocket transport and
the asyncio scheduler are the production implementations, tests use
in-memory fakes.

Uses @runtime_checkable for both static (mypy/pyright) and runtime (isinstance)
validation of implementations.

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable


@runtime_checkable
class TransportListener(Protocol):
    """Receives events from exactly one Transport."""

    def on_open(self) -> None:
        """Connection established; frames may now be sent."""
        ...

    def on_message(self, data: str | bytes) -> None:
        """One inbound frame."""
        ...

    def on_error(self, error: BaseException | None) -> None:
        """Transport-level error. A close event may follow."""
        ...

    def on_close(self, code: int) -> None:
        """Connection closed with a WebSocket close code (1006 = abnormal)."""
        ...


@runtime_checkable
class Transport(Protocol):
    """One message-oriented full-duplex connection.

    Events are delivered to the bound listener on the event loop thread.
    A transport is single use: once closed it is discarded.
    """

    @property
    def url(self) -> str:
        """Endpoint URL this transport connects to."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if frames can be sent."""
        ...

    def bind(self, listener: TransportListener | None) -> None:
        """Attach (or detach with None) the event listener."""
        ...

    def open(self) -> None:
        """Start connecting. Returns immediately; on_open fires later."""
        ...

    def send(self, data: str) -> None:
        """Queue one text frame.

        Raises:
            SimTransportError: The transport is not open.

        """
        ...

    def close(self, code: int = 1000) -> None:
        """Start closing. Returns immediately."""
        ...

    async def wait_closed(self) -> None:
        """Wait until the connection has been torn down."""
        ...


type TransportFactory = Callable[[str], Transport]
"""Creates an unopened transport for a ``ws://host:port`` URL."""


@runtime_checkable
class TimerHandle(Protocol):
    """Handle returned by Scheduler.call_later."""

    def cancel(self) -> None:
        """Cancel the callback if it has not run yet."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Runs callbacks after a delay on the event loop."""

    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle:
        """Schedule ``callback`` to run in ``delay`` seconds."""
        ...
