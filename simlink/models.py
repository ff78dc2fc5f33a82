"""Pydantic 2 models for the simlink wire protocol.

Inbound server messages form a tagged union keyed by ``type``; outbound
client messages are keyed by ``command`` and always carry the session ``id``.

Hierarchy Level: 2
- Imports: SimConstants (Level 0), SimTypes, exceptions (Level 1)
- Used by: session.py, outbound.py, client.py

Usage:

    # Decode a server frame
    message = SimModels.decode('{"type": "ID", "value": "abc"}')

    # Encode a client message
    frame = SimModels.Subscribe(id="abc", data=["sim/foo"], precision=0.01).to_wire()
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

import orjson
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    computed_field,
    field_validator,
)

from simlink.constants import SimConstants as c
from simlink.exceptions import SimProtocolError


def _stringify(value: object) -> str:
    """Render a scalar the way the server parses SET payloads."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class SimModels:
    """Container for all wire models.

    Inbound (server -> client):
    - Log, Identity, Update, CommandNotice, OnceResult, Redirect
    - Unknown: any frame whose ``type`` is not a known kind

    Outbound (client -> server):
    - Identify, SetDataref, SetArrayDataref, GetOnce, Subscribe,
      RegisterCommandCallback, Reposition, RunCommand
    """

    # =========================================================================
    # INBOUND
    # =========================================================================

    class Inbound(BaseModel):
        """Base class for server messages."""

        model_config = ConfigDict(frozen=True, extra="ignore")

    class Log(Inbound):
        """Diagnostic text from the server."""

        type: Literal["LOG"] = "LOG"
        value: Any = ""

        @computed_field
        @property
        def is_trial_limit(self) -> bool:
            """Check if this is the trial subscription limit notice."""
            return self.value == c.Notices.TRIAL_LIMIT

    class Identity(Inbound):
        """Session identifier assignment."""

        type: Literal["ID"] = "ID"
        value: str | int

    class Update(Inbound):
        """Batch of dataref values keyed by name."""

        type: Literal["RES"] = "RES"
        value: dict[str, Any] = Field(default_factory=dict)

    class CommandNotice(Inbound):
        """A command registered through REGISTER_CMD_CALLBACK fired."""

        type: Literal["COMMAND"] = "COMMAND"
        value: str

    class OnceResult(Inbound):
        """Result of a GET_ONCE request, correlated by arrival order."""

        type: Literal["ONCE"] = "ONCE"
        value: Any = None

    class RedirectTarget(BaseModel):
        """Endpoint carried by CHNGCONN. Either field may be missing."""

        model_config = ConfigDict(frozen=True, extra="ignore")

        host: str | None = Field(default=None, min_length=1)
        port: int | None = Field(default=None, gt=0, lt=65536)

        @computed_field
        @property
        def is_complete(self) -> bool:
            """Check if both host and port are present."""
            return self.host is not None and self.port is not None

    class Redirect(Inbound):
        """Instruction to move to another endpoint."""

        type: Literal["CHNGCONN"] = "CHNGCONN"
        value: RedirectTarget = Field(
            default_factory=lambda: SimModels.RedirectTarget()
        )

    class Unknown(Inbound):
        """Frame with an unrecognized ``type``; kept for logging."""

        type: str | None = None
        raw: dict[str, Any] = Field(default_factory=dict)

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    class Outbound(BaseModel):
        """Base class for client messages.

        ``id`` is required: a message cannot exist without a session identifier.
        """

        model_config = ConfigDict(frozen=True, use_enum_values=True)

        id: str | int
        command: str

        def to_wire(self) -> str:
            """Serialize to a JSON text frame."""
            return orjson.dumps(self.model_dump(mode="json")).decode()

    class Identify(Outbound):
        """IDENTIFY with caller metadata."""

        command: Literal["IDENTIFY"] = "IDENTIFY"
        data: Any = None

    class SetDataref(Outbound):
        """SET a scalar dataref. ``data`` is always a string on the wire."""

        command: Literal["SET"] = "SET"
        dataref: str
        data: str
        type: str

        @field_validator("data", mode="before")
        @classmethod
        def _stringify_data(cls, value: object) -> str:
            return _stringify(value)

    class SetArrayDataref(Outbound):
        """ASET an array dataref starting at ``offset``."""

        command: Literal["ASET"] = "ASET"
        dataref: str
        type: Literal["INT_ARRAY", "FLOAT_ARRAY"]
        data: list[int | float]
        offset: int = Field(default=0, ge=0)

    class GetOnce(Outbound):
        """GET_ONCE for a list of datarefs."""

        command: Literal["GET_ONCE"] = "GET_ONCE"
        data: list[str]

    class Subscribe(Outbound):
        """SUBSCRIBE with a precision hint forwarded verbatim."""

        command: Literal["SUBSCRIBE"] = "SUBSCRIBE"
        data: list[str]
        precision: float = Field(default=c.Subscription.PRECISION, ge=0)

    class RegisterCommandCallback(Outbound):
        """REGISTER_CMD_CALLBACK for one command name."""

        command: Literal["REGISTER_CMD_CALLBACK"] = "REGISTER_CMD_CALLBACK"
        data: str

    class Position(BaseModel):
        """Structured reposition target."""

        model_config = ConfigDict(frozen=True)

        lat: float = Field(ge=-90, le=90)
        lon: float = Field(ge=-180, le=180)
        hdg: float
        alt: float
        speed: float
        fast: bool = False

    class Reposition(Outbound):
        """REPOSITION to an airport ICAO code or a Position."""

        command: Literal["REPOSITION"] = "REPOSITION"
        data: str | Position

    class RunCommand(Outbound):
        """RUN_COMMAND once, or begin/end of a held command."""

        command: Literal["RUN_COMMAND"] = "RUN_COMMAND"
        data: str
        type: c.Protocol.CommandPhase = c.Protocol.CommandPhase.ONCE

    # =========================================================================
    # DECODING
    # =========================================================================

    @staticmethod
    def decode(raw: str | bytes) -> SimModels.Inbound:
        """Decode one server frame.

        Args:
            raw: JSON text frame.

        Returns:
            The typed message, or ``Unknown`` for unrecognized kinds.

        Raises:
            SimProtocolError: Frame is not a JSON object, or a known kind has
                a malformed payload.

        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            msg = "Frame is not valid JSON"
            raise SimProtocolError(msg) from e

        if not isinstance(data, dict):
            msg = "Frame is not a JSON object"
            raise SimProtocolError(msg, details={"frame": type(data).__name__})

        kind = data.get("type")
        if kind not in _INBOUND_KINDS:
            return SimModels.Unknown(type=None if kind is None else str(kind), raw=data)

        try:
            return _INBOUND_ADAPTER.validate_python(data)
        except ValidationError as e:
            msg = "Malformed payload"
            raise SimProtocolError(
                msg, kind=kind, details={"errors": e.error_count()}
            ) from e


_INBOUND_KINDS = frozenset(kind.value for kind in c.Protocol.InboundKind)
_INBOUND_ADAPTER: TypeAdapter[SimModels.Inbound] = TypeAdapter(
    Annotated[
        SimModels.Log
        | SimModels.Identity
        | SimModels.Update
        | SimModels.CommandNotice
        | SimModels.OnceResult
        | SimModels.Redirect,
        Field(discriminator="type"),
    ]
)
