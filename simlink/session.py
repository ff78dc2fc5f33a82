"""Session state machine for the instrument server connection.

Hierarchy Level: 3
- Imports: models.py (Level 2), constants, exceptions (Level 0-1)
- Used by: client.py

Phases:

    IDLE ──start()──> CONNECTING ──open──> IDENTIFYING ──ID──> ACTIVE
                          ^                     ^                 │
                          │ close 1006          │ open            │ CHNGCONN
                          │ (after delay,       │                 v
                          │  port flipped)      └──────────── REDIRECTING
                          │
       ACTIVE / IDENTIFYING ─ any other close code ─> CLOSED

While IDENTIFYING only LOG and ID are accepted. Once ACTIVE, LOG and
CHNGCONN are handled here and every other known kind is handed to the
``on_message`` hook.

Each transport gets its own listener; events from a transport that is no
longer current are ignored.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from simlink.constants import SimConstants as c
from simlink.exceptions import SimProtocolError, SimTransportError
from simlink.models import SimModels

if TYPE_CHECKING:
    from collections.abc import Callable

    from simlink.protocols import Scheduler, TimerHandle, Transport, TransportFactory
    from simlink.types import SimTypes

log = logging.getLogger(__name__)


class SessionPhase(StrEnum):
    """Lifecycle phase of a session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    ACTIVE = "active"
    REDIRECTING = "redirecting"
    CLOSED = "closed"


class _Listener:
    """Binds one transport's events to the state machine."""

    __slots__ = ("_session", "_transport")

    def __init__(self, session: SessionStateMachine, transport: Transport) -> None:
        self._session = session
        self._transport = transport

    def _current(self, event: str) -> bool:
        if self._session.transport is self._transport:
            return True
        log.debug("Ignoring %s from stale transport %s", event, self._transport.url)
        return False

    def on_open(self) -> None:
        if self._current("open"):
            self._session._handle_open()

    def on_message(self, data: str | bytes) -> None:
        if self._current("message"):
            self._session._handle_message(data)

    def on_error(self, error: BaseException | None) -> None:
        if self._current("error"):
            self._session._handle_error(error)

    def on_close(self, code: int) -> None:
        if self._current("close"):
            self._session._handle_close(code)


class SessionStateMachine:
    """Handshake, reconnect with port failover, and redirection.

    Args:
        host: Server host.
        ports: (primary, fallback) ports, alternated on each reconnect.
        transport_factory: Creates an unopened transport for a URL.
        scheduler: Runs the delayed reconnect.
        reconnect_delay: Seconds between an abnormal close and the reconnect.
        on_identified: Called with the identifier once the handshake is done.
        on_message: Called with every routed message while active.
        on_redirect: Called after a redirect replaced the transport.
        on_error: Called on transport errors.
        on_notice: Called with service notices meant for the end user.

    """

    def __init__(
        self,
        host: str,
        ports: tuple[int, int],
        *,
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        reconnect_delay: float = c.Timing.RECONNECT_DELAY,
        on_identified: Callable[[SimTypes.SessionId], object],
        on_message: Callable[[SimModels.Inbound], object],
        on_redirect: Callable[[], object] | None = None,
        on_error: Callable[[BaseException | None], object] | None = None,
        on_notice: SimTypes.NoticeHandler | None = None,
    ) -> None:
        self._host = host
        self._ports = ports
        self._port_index = 0
        self._port_override: int | None = None
        self._transport_factory = transport_factory
        self._scheduler = scheduler
        self._reconnect_delay = reconnect_delay
        self._on_identified = on_identified
        self._on_message = on_message
        self._on_redirect = on_redirect
        self._on_error = on_error
        self._on_notice = on_notice

        self._transport: Transport | None = None
        self._identifier: SimTypes.SessionId | None = None
        self._phase = SessionPhase.IDLE
        self._reconnect_handle: TimerHandle | None = None

    def __repr__(self) -> str:
        return f"<SessionStateMachine {self.url} {self._phase}>"

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def identifier(self) -> SimTypes.SessionId | None:
        """Session identifier, None until the handshake completes."""
        return self._identifier

    @property
    def phase(self) -> SessionPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def host(self) -> str:
        """Host of the current (or next) connection attempt."""
        return self._host

    @property
    def port(self) -> int:
        """Port of the current (or next) connection attempt."""
        if self._port_override is not None:
            return self._port_override
        return self._ports[self._port_index]

    @property
    def endpoint(self) -> tuple[str, int]:
        """(host, port) of the current transport."""
        return (self._host, self.port)

    @property
    def url(self) -> str:
        """WebSocket URL of the current transport."""
        return f"{c.Network.SCHEME}://{self._host}:{self.port}"

    @property
    def transport(self) -> Transport | None:
        """The transport events are accepted from."""
        return self._transport

    @property
    def reconnect_pending(self) -> bool:
        """Check if a reconnect is scheduled."""
        return self._reconnect_handle is not None

    # =========================================================================
    # CONTROL
    # =========================================================================

    def start(self, host: str | None = None) -> None:
        """Open the first transport on the primary port.

        Args:
            host: Replaces the host before connecting (used by reloads).

        """
        if self._phase not in {SessionPhase.IDLE, SessionPhase.CLOSED}:
            return
        if host is not None:
            self._host = host
        self._port_index = 0
        self._port_override = None
        self._identifier = None
        self._connect()

    def stop(self) -> None:
        """Close the transport, forget the identifier, cancel the reconnect."""
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        transport = self._transport
        self._transport = None
        self._identifier = None
        self._phase = SessionPhase.CLOSED
        if transport is not None:
            transport.bind(None)
            transport.close()

    def send(self, data: str) -> None:
        """Send one frame on the current transport.

        Raises:
            SimTransportError: No transport, or the transport is not open.

        """
        if self._transport is None:
            raise SimTransportError(host=self._host, port=self.port)
        self._transport.send(data)

    # =========================================================================
    # TRANSPORT LIFECYCLE
    # =========================================================================

    def _connect(self) -> None:
        transport = self._transport_factory(self.url)
        transport.bind(_Listener(self, transport))
        self._transport = transport
        self._phase = SessionPhase.CONNECTING
        log.info("Connecting to %s", transport.url)
        transport.open()

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        log.info("Reconnecting...")
        self._port_index ^= 1
        self._port_override = None
        self._identifier = None
        self._connect()

    def _handle_open(self) -> None:
        log.debug("Transport to %s open, waiting for identifier", self.url)
        self._phase = SessionPhase.IDENTIFYING

    def _handle_error(self, error: BaseException | None) -> None:
        log.warning("Unspecified error with socket: %s", error or "no details")
        if self._on_error is not None:
            self._on_error(error)

    def _handle_close(self, code: int) -> None:
        if code != c.Network.CloseCode.ABNORMAL:
            log.info("Connection to %s closed (code %d)", self.url, code)
            self._identifier = None
            self._phase = SessionPhase.CLOSED
            return

        log.warning(
            "Connection to %s lost, reconnecting in %.0fs",
            self.url,
            self._reconnect_delay,
        )
        self._phase = SessionPhase.CONNECTING
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        self._reconnect_handle = self._scheduler.call_later(
            self._reconnect_delay, self._reconnect
        )

    # =========================================================================
    # INBOUND MESSAGES
    # =========================================================================

    def _handle_message(self, data: str | bytes) -> None:
        try:
            message = SimModels.decode(data)
        except SimProtocolError as e:
            log.warning("Dropping message: %s", e)
            return

        if self._identifier is None:
            self._handshake(message)
        else:
            self._route(message)

    def _handshake(self, message: SimModels.Inbound) -> None:
        match message:
            case SimModels.Log():
                log.warning("%s", message.value)
                if message.is_trial_limit and self._on_notice is not None:
                    self._on_notice(message.value)
            case SimModels.Identity(value=identifier):
                self._identifier = identifier
                self._phase = SessionPhase.ACTIVE
                log.info("identifier: %s", identifier)
                self._on_identified(identifier)
            case _:
                log.warning(
                    "Dropping %s message received before identification",
                    getattr(message, "type", None),
                )

    def _route(self, message: SimModels.Inbound) -> None:
        match message:
            case SimModels.Log():
                log.warning("%s", message.value)
            case SimModels.Redirect(value=target):
                self._redirect(target)
            case SimModels.Update() | SimModels.CommandNotice() | SimModels.OnceResult():
                self._on_message(message)
            case _:
                log.warning("Problem with response: %s", message)

    def _redirect(self, target: SimModels.RedirectTarget) -> None:
        if not target.is_complete:
            log.warning("Ignoring redirect without host and port: %s", target)
            return

        old = self._transport
        self._host = target.host
        self._port_override = target.port
        log.info("The instrument is now connecting to %s", self.url)

        transport = self._transport_factory(self.url)
        transport.bind(_Listener(self, transport))
        self._transport = transport
        self._identifier = None
        self._phase = SessionPhase.REDIRECTING
        transport.open()

        if old is not None:
            old.bind(None)
            old.close()
        if self._on_redirect is not None:
            self._on_redirect()
