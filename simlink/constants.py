"""Simlink Constants - Centralized protocol and network constants.

All magic numbers, wire tags, and enums are defined here.
Access via: from simlink.constants import SimConstants as c
Usage: c.Network.PRIMARY_PORT, c.Protocol.InboundKind.RES, etc.
"""

from enum import IntEnum, StrEnum
from typing import Final


class SimConstants:
    """Centralized constants organized by domain namespaces.

    All constants are accessed via c.Namespace.CONSTANT or c.Namespace.Enum.VALUE
    """

    # ==================== NETWORK ====================
    class Network:
        """Endpoint and transport constants."""

        # Instrument server ports, tried alternately on reconnect
        PRIMARY_PORT: Final = 9003
        FALLBACK_PORT: Final = 9002

        LOCALHOST: Final = "localhost"
        AUTO_ENDPOINT: Final = "auto"
        SCHEME: Final = "ws"

        OPEN_TIMEOUT: Final = 10.0  # seconds
        MAX_MESSAGE_SIZE: Final = 16 * 1024 * 1024  # 16MB

        class CloseCode(IntEnum):
            """WebSocket close codes the session reacts to."""

            NORMAL = 1000
            GOING_AWAY = 1001
            NO_STATUS = 1005
            ABNORMAL = 1006

    # ==================== TIMING ====================
    class Timing:
        """Delays used by the session and the outbound envelope (seconds)."""

        RECONNECT_DELAY: Final = 5.0
        RELOAD_DELAY: Final = 5.0
        LOADING_THRESHOLD: Final = 3.0

    # ==================== WIRE PROTOCOL ====================
    class Protocol:
        """Message kinds, command tags and payload enums."""

        class InboundKind(StrEnum):
            """Value of the ``type`` field on server messages."""

            LOG = "LOG"
            ID = "ID"
            RES = "RES"
            COMMAND = "COMMAND"
            ONCE = "ONCE"
            CHNGCONN = "CHNGCONN"

        class Command(StrEnum):
            """Value of the ``command`` field on client messages."""

            IDENTIFY = "IDENTIFY"
            SET = "SET"
            ASET = "ASET"
            GET_ONCE = "GET_ONCE"
            SUBSCRIBE = "SUBSCRIBE"
            REGISTER_CMD_CALLBACK = "REGISTER_CMD_CALLBACK"
            REPOSITION = "REPOSITION"
            RUN_COMMAND = "RUN_COMMAND"

        class CommandPhase(IntEnum):
            """RUN_COMMAND ``type`` tag."""

            ONCE = 0
            BEGIN = 1
            END = 2

        class DatarefType(StrEnum):
            """Dataref type tags understood by the server."""

            INT = "INT"
            FLOAT = "FLOAT"
            DOUBLE = "DOUBLE"
            INT_ARRAY = "INT_ARRAY"
            FLOAT_ARRAY = "FLOAT_ARRAY"
            DATA = "DATA"

        # Scalar tag -> array tag accepted by ASET
        ARRAY_TYPES: Final = {
            DatarefType.INT: DatarefType.INT_ARRAY,
            DatarefType.FLOAT: DatarefType.FLOAT_ARRAY,
            DatarefType.INT_ARRAY: DatarefType.INT_ARRAY,
            DatarefType.FLOAT_ARRAY: DatarefType.FLOAT_ARRAY,
        }

    # ==================== SUBSCRIPTIONS ====================
    class Subscription:
        """Subscription defaults."""

        PRECISION: Final = 0.0  # precision-aware entry point
        VARIADIC_PRECISION: Final = 0.01  # simplified entry point
        MIN_DELTA_TIME: Final = 0.0  # unthrottled
        DEFAULT_VALUE: Final = 0

    # ==================== CLIENT EVENTS ====================
    class Events(StrEnum):
        """Event names accepted by SimClient.on()."""

        LOADING_STATE_CHANGES = "loadingStateChanges"
        CONNECTION_TIMEOUT = "connectionTimeout"

    # ==================== SERVER NOTICES ====================
    class Notices:
        """Diagnostic texts with special handling."""

        TRIAL_LIMIT: Final = "Subscription limit for free trial version exceeded"
