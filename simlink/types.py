"""Type definitions for simlink.

All type aliases organized in a single container class for:
- Clean namespace (no loose code)
- Single import: `from simlink.types import SimTypes`

Hierarchy Level: 1
- Used by: models.py, dispatch.py, commands.py, outbound.py, client.py

Usage:
    >>> from simlink.types import SimTypes
    >>> def on_update(*values: SimTypes.DatarefValue) -> None: ...

"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any


class SimTypes:
    """Simlink type definitions container.

    Categories:
    - Wire values: SessionId, DatarefValue, Metadata, JSONValue
    - Callbacks: SubscriptionCallback, CommandCallback, OnceCallback,
      EventHandler, NoticeHandler

    Note: Transport, TransportListener and Scheduler are in simlink.protocols.

    """

    # =========================================================================
    # JSON TYPE ALIASES
    # =========================================================================

    type JSONPrimitive = str | int | float | bool | None
    """Primitive JSON-compatible values."""

    type JSONValue = JSONPrimitive | list[JSONValue] | dict[str, JSONValue]
    """Recursive JSON-compatible value type."""

    # =========================================================================
    # WIRE VALUES
    # =========================================================================

    type SessionId = str | int
    """Opaque session identifier issued by the server on handshake."""

    type DatarefValue = Any
    """Dataref value as delivered by the server (number, array or string)."""

    type DatarefBatch = Mapping[str, Any]
    """One RES payload: dataref name -> value."""

    type Metadata = Mapping[str, Any]
    """Caller-supplied IDENTIFY payload."""

    # =========================================================================
    # CALLBACK TYPE ALIASES
    # =========================================================================

    type SubscriptionCallback = Callable[..., object]
    """Called with one positional value per subscribed dataref."""

    type CommandCallback = Callable[[], object]
    """Called with no arguments when the server reports a command."""

    type OnceCallback = Callable[[Any], object]
    """Called with the payload of the matching ONCE response."""

    type EventHandler = Callable[..., object]
    """Handler registered through SimClient.on()."""

    type NoticeHandler = Callable[[str], object]
    """Receives service notices that must be shown to the end user."""
