"""
Custom exceptions for simlink.

This module provides a hierarchy of exceptions for error handling
when talking to a simulator instrument server.

Exception Hierarchy:
    SimError
    ├── SimConnectionError
    │   └── SimTransportError
    ├── SimSessionError
    ├── SimProtocolError
    └── SimValueError
"""

from __future__ import annotations

from typing import Any


class SimError(Exception):
    """
    Base exception for all simlink errors.

    Attributes:
        message: Human-readable error description
        details: Optional additional error details
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with details."""
        msg = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({details_str})"
        return msg


class SimConnectionError(SimError):
    """
    Raised when the instrument server cannot be reached.

    This includes:
    - Connection refused
    - Handshake rejected
    - Connection reset
    """

    def __init__(
        self,
        message: str = "Failed to connect to instrument server",
        host: str | None = None,
        port: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        if port:
            details["port"] = port
        super().__init__(message, details=details, **kwargs)


class SimTransportError(SimConnectionError):
    """
    Raised when a frame cannot be handed to the socket.

    Typically the socket is still connecting, closing, or already closed.
    """

    def __init__(
        self,
        message: str = "Socket is not open",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class SimSessionError(SimError):
    """
    Raised when an outbound message is built without a session identifier.

    This is a programming error: the caller used the client before the
    ready callback fired, or during a reconnect.
    """

    def __init__(
        self,
        message: str = "Message must contain connection identifier property: id",
        command: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if command:
            details["command"] = command
        super().__init__(message, details=details, **kwargs)


class SimProtocolError(SimError):
    """
    Raised when an inbound frame cannot be decoded.

    This can happen when:
    - The frame is not JSON
    - The frame is not a JSON object
    - A known message kind carries a payload of the wrong shape
    """

    def __init__(
        self,
        message: str = "Malformed message from server",
        kind: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if kind:
            details["kind"] = kind
        super().__init__(message, details=details, **kwargs)


class SimValueError(SimError, ValueError):
    """
    Raised when a public operation receives an invalid argument.

    Examples:
    - ASET with a type other than INT_ARRAY / FLOAT_ARRAY
    - Unknown event name passed to on()
    """
