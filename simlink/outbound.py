"""Outbound message envelope and one-shot request queue.

Hierarchy Level: 3
- Imports: models.py (Level 2), exceptions (Level 1)
- Used by: client.py

Every client message carries the current session identifier. Building one
without an identifier is a programming error (SimSessionError). A frame the
transport refuses (socket not open) is not raised to the caller: the failure
is logged and a reload of the whole client is scheduled.

One-shot reads are correlated by position only: the n-th ONCE response
resolves the n-th pending GET_ONCE, whatever its content.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

import orjson

from simlink.exceptions import SimSessionError, SimTransportError
from simlink.models import SimModels

if TYPE_CHECKING:
    from collections.abc import Callable

    from simlink.protocols import Scheduler, TimerHandle
    from simlink.types import SimTypes

log = logging.getLogger(__name__)


class _SessionLike(Protocol):
    @property
    def identifier(self) -> SimTypes.SessionId | None: ...

    def send(self, data: str) -> None: ...


class MessageEnvelope:
    """Builds identified messages and hands them to the session transport.

    Args:
        session: Source of the session identifier and the send path.
        scheduler: Runs the reload after ``reload_delay``.
        reload: Called when a scheduled reload fires.
        reload_delay: Seconds between a failed send and the reload.
        enable_reload: When False a failed send is only logged.

    """

    def __init__(
        self,
        session: _SessionLike,
        scheduler: Scheduler,
        *,
        reload: Callable[[], object],
        reload_delay: float,
        enable_reload: bool = True,
    ) -> None:
        self._session = session
        self._scheduler = scheduler
        self._reload = reload
        self._reload_delay = reload_delay
        self._enable_reload = enable_reload
        self._reload_handle: TimerHandle | None = None

    @property
    def reload_pending(self) -> bool:
        """Check if a reload is scheduled."""
        return self._reload_handle is not None

    def build[M: SimModels.Outbound](self, model: type[M], **fields: Any) -> M:
        """Create ``model`` stamped with the current session identifier.

        Raises:
            SimSessionError: No session identifier yet.

        """
        identifier = self._session.identifier
        if identifier is None:
            raise SimSessionError(command=model.model_fields["command"].default)
        return model(id=identifier, **fields)

    def send(self, message: SimModels.Outbound | Mapping[str, Any]) -> bool:
        """Serialize and transmit one message.

        Mappings are accepted for collaborators formatting their own payloads;
        they must carry a non-null ``id``.

        Returns:
            True if the frame was handed to the transport.

        Raises:
            SimSessionError: A mapping without ``id``.

        """
        if isinstance(message, SimModels.Outbound):
            frame = message.to_wire()
        else:
            if message.get("id") is None:
                raise SimSessionError(command=message.get("command"))
            frame = orjson.dumps(dict(message)).decode()

        log.debug("Sending %s", frame)
        try:
            self._session.send(frame)
        except SimTransportError as e:
            log.warning(
                "Problem with socket, reloading in %.0fs: %s", self._reload_delay, e
            )
            self._schedule_reload()
            return False
        return True

    def cancel(self) -> None:
        """Cancel a pending reload."""
        if self._reload_handle is not None:
            self._reload_handle.cancel()
            self._reload_handle = None

    def _schedule_reload(self) -> None:
        if not self._enable_reload or self._reload_handle is not None:
            return
        self._reload_handle = self._scheduler.call_later(
            self._reload_delay, self._run_reload
        )

    def _run_reload(self) -> None:
        self._reload_handle = None
        self._reload()


class OnceRequestQueue:
    """FIFO of callbacks awaiting a ONCE response."""

    def __init__(self) -> None:
        self._callbacks: deque[SimTypes.OnceCallback] = deque()

    def __len__(self) -> int:
        return len(self._callbacks)

    def push(self, callback: SimTypes.OnceCallback) -> None:
        """Append a callback for the next unanswered GET_ONCE."""
        self._callbacks.append(callback)

    def resolve(self, payload: Any) -> bool:
        """Invoke the oldest pending callback with ``payload``.

        Returns:
            False if nothing was pending; the payload is dropped.

        """
        if not self._callbacks:
            log.warning("ONCE response with no pending request dropped")
            return False

        callback = self._callbacks.popleft()
        try:
            callback(payload)
        except Exception:
            log.exception("One-shot read callback failed")
        return True

    def clear(self) -> None:
        """Forget every pending callback."""
        self._callbacks.clear()
