"""Simlink Package.

A realtime client for flight-simulator instrument servers.
Keeps a WebSocket session with the simulator, subscribes to datarefs and
dispatches updates and command notifications to Python callbacks.

Main components:
- SimClient: Session, subscriptions, commands and one-shot reads
- SimSettings: Configuration management with environment variable support
- SimModels: Typed wire protocol messages
- SimConstants: Protocol tags, ports and defaults
"""

from importlib.metadata import version

__version__ = version("simlink")


from simlink.client import SimClient
from simlink.constants import SimConstants
from simlink.models import SimModels
from simlink.session import SessionPhase
from simlink.settings import SimSettings

__all__ = [
    "SessionPhase",
    "SimClient",
    "SimConstants",
    "SimModels",
    "SimSettings",
    "__version__",
]
