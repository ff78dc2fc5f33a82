"""Realtime simulator client for simlink.

Connects to an instrument server over WebSocket, keeps a session alive
across drops and redirects, and dispatches dataref updates and command
notifications to registered callbacks.

Example:
    >>> async def main() -> None:
    ...     def ready(client: SimClient) -> None:
    ...         client.subscribe(["sim/cockpit2/gauges/indicators/airspeed_kts_pilot"],
    ...                          print, min_delta_time=0.1)
    ...
    ...     async with SimClient("auto", {"name": "pfd"}, ready) as client:
    ...         await asyncio.sleep(60)

Threading:
    Everything runs on one asyncio loop. Callbacks are invoked synchronously
    from the loop and must not block.

Lifecycle:
    - start() / close() (or ``async with``) open and tear down the session
    - the ready callback runs after every handshake, including the ones that
      follow a reconnect, a redirect or a reload
    - public operations raise SimSessionError until the first handshake

"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import urlsplit

from simlink.commands import CommandCallbackRegistry
from simlink.constants import SimConstants as c
from simlink.dispatch import SubscriptionDispatcher
from simlink.exceptions import SimValueError
from simlink.models import SimModels
from simlink.outbound import MessageEnvelope, OnceRequestQueue
from simlink.session import SessionPhase, SessionStateMachine
from simlink.settings import SimSettings
from simlink.transport import LoopScheduler, websocket_factory

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from types import TracebackType

    from simlink.dispatch import DatarefCache
    from simlink.protocols import Scheduler, TimerHandle, TransportFactory
    from simlink.types import SimTypes

log = logging.getLogger(__name__)

type ReadyCallback = Callable[[SimClient], object]


def _print_banner(text: str) -> None:
    """Show a service notice to the end user."""
    sys.stderr.write(f"\033[31m{text}\033[0m\n")


class SimClient:
    """Instrument client: session, subscriptions, commands and one-shot reads.

    Args:
        endpoint: "auto" (configured host), "host" or "host:port".
        metadata: Sent with IDENTIFY after every handshake.
        on_ready: Called with the client after every handshake.
        settings: Configuration; loaded from the environment when omitted.
        transport_factory: Creates transports; WebSocket by default.
        scheduler: Delayed callbacks; the running asyncio loop by default.
        clock: Monotonic time source for subscription throttling.
        notice_handler: Shows service notices (trial limit) to the end user.
        reload: Replaces the default reload run after a failed send.

    """

    def __init__(
        self,
        endpoint: str = c.Network.AUTO_ENDPOINT,
        metadata: SimTypes.Metadata | None = None,
        on_ready: ReadyCallback | None = None,
        *,
        settings: SimSettings | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        notice_handler: SimTypes.NoticeHandler | None = None,
        reload: Callable[[], object] | None = None,
    ) -> None:
        self._settings = settings if settings is not None else SimSettings()
        host, ports = self._resolve_endpoint(endpoint)
        self._initial_host = host
        self._metadata = dict(metadata or {})
        self._on_ready = on_ready
        self._scheduler = scheduler if scheduler is not None else LoopScheduler()
        self._handlers: dict[str, SimTypes.EventHandler] = {}
        self._ready_event = asyncio.Event()

        # Loading monitor
        self._loading = True
        self._loading_handle: TimerHandle | None = None

        # Pending command_end releases from command_for_duration
        self._held: set[TimerHandle] = set()

        self.dispatcher = SubscriptionDispatcher(clock)
        self.commands = CommandCallbackRegistry()
        self.requests = OnceRequestQueue()

        if transport_factory is None:
            transport_factory = websocket_factory(self._settings)
        self._session = SessionStateMachine(
            host,
            ports,
            transport_factory=transport_factory,
            scheduler=self._scheduler,
            reconnect_delay=self._settings.reconnect_delay,
            on_identified=self._handle_identified,
            on_message=self._handle_message,
            on_redirect=self._handle_redirect,
            on_error=self._handle_transport_error,
            on_notice=notice_handler if notice_handler is not None else _print_banner,
        )
        self._envelope = MessageEnvelope(
            self._session,
            self._scheduler,
            reload=reload if reload is not None else self.reload,
            reload_delay=self._settings.reload_delay,
            enable_reload=self._settings.enable_reload,
        )

    def __repr__(self) -> str:
        return f"<SimClient {self._session.url} {self._session.phase}>"

    def _resolve_endpoint(self, endpoint: str) -> tuple[str, tuple[int, int]]:
        """Resolve "auto", "host" or "host:port" to a host and port pair."""
        if endpoint == c.Network.AUTO_ENDPOINT:
            return self._settings.host, self._settings.ports

        parts = urlsplit(endpoint if "//" in endpoint else f"//{endpoint}")
        try:
            port = parts.port
        except ValueError as e:
            msg = "Invalid endpoint port"
            raise SimValueError(msg, details={"endpoint": endpoint}) from e
        if not parts.hostname:
            msg = "Endpoint must name a host"
            raise SimValueError(msg, details={"endpoint": endpoint})

        if port is None:
            return parts.hostname, self._settings.ports
        fallback = self._settings.fallback_port
        if port == fallback:
            fallback = self._settings.primary_port
        return parts.hostname, (port, fallback)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def settings(self) -> SimSettings:
        """Active configuration."""
        return self._settings

    @property
    def identifier(self) -> SimTypes.SessionId | None:
        """Session identifier, None outside an active session."""
        return self._session.identifier

    @property
    def phase(self) -> SessionPhase:
        """Session lifecycle phase."""
        return self._session.phase

    @property
    def endpoint(self) -> tuple[str, int]:
        """(host, port) of the current transport."""
        return self._session.endpoint

    @property
    def is_ready(self) -> bool:
        """Check if a session identifier is held."""
        return self._session.identifier is not None

    @property
    def is_loading(self) -> bool:
        """Check if the simulator is believed to be loading (no updates)."""
        return self._loading

    @property
    def cache(self) -> DatarefCache:
        """Last known dataref values (read-only mapping)."""
        return self.dispatcher.cache

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Open the first connection. Requires a running event loop."""
        self._session.start()

    def close(self) -> None:
        """Tear down the session and cancel every timer."""
        self._cancel_loading_timer()
        for handle in self._held:
            handle.cancel()
        self._held.clear()
        self._envelope.cancel()
        self._session.stop()

    async def aclose(self) -> None:
        """Close and wait for the transport to finish."""
        transport = self._session.transport
        self.close()
        if transport is not None:
            await transport.wait_closed()

    async def wait_ready(self) -> None:
        """Wait until the client holds a session identifier."""
        while not self.is_ready:
            self._ready_event.clear()
            await self._ready_event.wait()

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        await self.aclose()

    def reload(self) -> None:
        """Reset all client state and reconnect from scratch.

        Subscriptions, cached values, command callbacks and pending one-shot
        reads are dropped; the ready callback re-registers what it needs.
        """
        log.warning("Reloading client")
        self.close()
        self.dispatcher.clear()
        self.commands.clear()
        self.requests.clear()
        self._loading = True
        self._session.start(host=self._initial_host)

    def on(self, event: str, handler: SimTypes.EventHandler) -> None:
        """Register the handler for ``loadingStateChanges`` or ``connectionTimeout``.

        Raises:
            SimValueError: Unknown event name.

        """
        try:
            name = c.Events(event)
        except ValueError as e:
            msg = "Unknown event"
            raise SimValueError(msg, details={"event": event}) from e
        self._handlers[name] = handler

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    def send_message(self, message: SimModels.Outbound | Mapping[str, Any]) -> bool:
        """Send a prepared message through the envelope.

        Returns:
            True if handed to the transport; False if a reload was scheduled.

        """
        return self._envelope.send(message)

    def set_dataref(self, dataref: str, type: str, value: object) -> bool:  # noqa: A002
        """SET a scalar dataref; ``value`` is sent as a string."""
        message = self._envelope.build(
            SimModels.SetDataref, dataref=dataref, type=type, data=value
        )
        return self._envelope.send(message)

    def set_array_dataref(
        self,
        dataref: str,
        type: str,  # noqa: A002
        values: Iterable[int | float],
        offset: int = 0,
    ) -> bool:
        """ASET an array dataref from ``offset``.

        ``INT`` and ``FLOAT`` are accepted as INT_ARRAY and FLOAT_ARRAY.

        Raises:
            SimValueError: Any other type.

        """
        array_type = c.Protocol.ARRAY_TYPES.get(type)
        if array_type is None:
            msg = "Type must be INT_ARRAY or FLOAT_ARRAY"
            raise SimValueError(msg, details={"type": type})
        message = self._envelope.build(
            SimModels.SetArrayDataref,
            dataref=dataref,
            type=array_type.value,
            data=list(values),
            offset=offset,
        )
        return self._envelope.send(message)

    def get_datarefs(
        self, datarefs: Iterable[str], callback: SimTypes.OnceCallback
    ) -> bool:
        """Read datarefs once; ``callback`` gets the matching ONCE payload."""
        message = self._envelope.build(SimModels.GetOnce, data=list(datarefs))
        self.requests.push(callback)
        return self._envelope.send(message)

    def subscribe(
        self,
        datarefs: Iterable[str],
        callback: SimTypes.SubscriptionCallback,
        *,
        min_delta_time: float = c.Subscription.MIN_DELTA_TIME,
        precision: float | None = None,
    ) -> str:
        """Subscribe ``callback`` to ``datarefs`` with a precision hint.

        Args:
            datarefs: Names; the callback receives one value per name, in order.
            callback: Called when any of the datarefs is updated.
            min_delta_time: Minimum seconds between calls (0 = every update).
            precision: Quantization hint for the server (default from settings).

        Returns:
            Subscription id.

        """
        if precision is None:
            precision = self._settings.subscribe_precision
        return self._subscribe(list(datarefs), callback, min_delta_time, precision)

    def dataref_subscribe(
        self,
        callback: SimTypes.SubscriptionCallback,
        min_delta_time: float = c.Subscription.MIN_DELTA_TIME,
        *datarefs: str,
    ) -> str:
        """Subscribe with the default variadic precision (0.01).

        Returns:
            Subscription id.

        """
        return self._subscribe(
            list(datarefs),
            callback,
            min_delta_time,
            self._settings.variadic_precision,
        )

    def _subscribe(
        self,
        datarefs: list[str],
        callback: SimTypes.SubscriptionCallback,
        min_delta_time: float,
        precision: float,
    ) -> str:
        message = self._envelope.build(
            SimModels.Subscribe, data=datarefs, precision=precision
        )
        subscription = self.dispatcher.add(
            datarefs, callback, min_delta_time=min_delta_time, precision=precision
        )
        self._envelope.send(message)
        return subscription.id

    def register_command_callback(
        self, command: str, callback: SimTypes.CommandCallback
    ) -> str:
        """Call ``callback`` whenever ``command`` fires in the simulator.

        Returns:
            Callback id for remove_command_callback().

        """
        message = self._envelope.build(SimModels.RegisterCommandCallback, data=command)
        callback_id = self.commands.add(command, callback)
        self._envelope.send(message)
        return callback_id

    def remove_command_callback(self, command: str, callback_id: str) -> None:
        """Remove one command callback.

        Raises:
            KeyError: Not registered (already removed, or dropped by a redirect).

        """
        self.commands.remove(command, callback_id)

    def move_to_airport(self, icao: str) -> bool:
        """Reposition the aircraft at an airport."""
        message = self._envelope.build(SimModels.Reposition, data=icao)
        return self._envelope.send(message)

    def move_to_position(  # noqa: PLR0913
        self,
        lat: float,
        lon: float,
        hdg: float,
        alt: float,
        speed: float,
        fast: bool = False,  # noqa: FBT001, FBT002
    ) -> bool:
        """Reposition the aircraft at a position, heading, altitude and speed."""
        position = SimModels.Position(
            lat=lat, lon=lon, hdg=hdg, alt=alt, speed=speed, fast=fast
        )
        message = self._envelope.build(SimModels.Reposition, data=position)
        return self._envelope.send(message)

    def run_command(
        self,
        name: str,
        phase: c.Protocol.CommandPhase = c.Protocol.CommandPhase.ONCE,
    ) -> bool:
        """Run a simulator command once, or begin/end a held command."""
        message = self._envelope.build(SimModels.RunCommand, data=name, type=phase)
        return self._envelope.send(message)

    def command_once(self, name: str) -> bool:
        """Run a command once."""
        return self.run_command(name)

    def command_begin(self, name: str) -> bool:
        """Start holding a command."""
        return self.run_command(name, c.Protocol.CommandPhase.BEGIN)

    def command_end(self, name: str) -> bool:
        """Release a held command."""
        return self.run_command(name, c.Protocol.CommandPhase.END)

    def command_for_duration(self, name: str, duration: float) -> TimerHandle:
        """Hold a command for ``duration`` seconds.

        close() and reload() cancel a release that has not fired yet.
        """
        self.command_begin(name)
        handle: TimerHandle

        def release() -> None:
            self._held.discard(handle)
            self.command_end(name)

        handle = self._scheduler.call_later(duration, release)
        self._held.add(handle)
        return handle

    # =========================================================================
    # SESSION HOOKS
    # =========================================================================

    def _handle_identified(self, identifier: SimTypes.SessionId) -> None:
        message = self._envelope.build(SimModels.Identify, data=self._metadata)
        self._envelope.send(message)
        self._ready_event.set()

        if self._on_ready is None:
            return
        try:
            self._on_ready(self)
        except Exception:
            log.exception("Ready callback failed for session %s", identifier)

    def _handle_message(self, message: SimModels.Inbound) -> None:
        self._note_activity()
        match message:
            case SimModels.Update(value=values):
                self.dispatcher.on_update_batch(values)
            case SimModels.CommandNotice(value=command):
                self.commands.on_command_notification(command)
            case SimModels.OnceResult(value=payload):
                self.requests.resolve(payload)

    def _handle_redirect(self) -> None:
        self.commands.clear()
        self._cancel_loading_timer()

    def _handle_transport_error(self, error: BaseException | None) -> None:
        self._emit(c.Events.CONNECTION_TIMEOUT)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _emit(self, event: c.Events, *args: object) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            log.exception("%s handler failed", event)

    def _note_activity(self) -> None:
        threshold = self._settings.loading_threshold
        if threshold <= 0:
            return
        if self._loading:
            self._loading = False
            self._emit(c.Events.LOADING_STATE_CHANGES, False)  # noqa: FBT003
        self._cancel_loading_timer()
        self._loading_handle = self._scheduler.call_later(
            threshold, self._loading_timeout
        )

    def _loading_timeout(self) -> None:
        self._loading_handle = None
        if not self._loading:
            self._loading = True
            self._emit(c.Events.LOADING_STATE_CHANGES, True)  # noqa: FBT003

    def _cancel_loading_timer(self) -> None:
        if self._loading_handle is not None:
            self._loading_handle.cancel()
            self._loading_handle = None
