"""Simlink configuration using Pydantic Settings.

Automatic environment variable loading with SIMLINK_ prefix.
Single source of truth for all configuration across the project.

Hierarchy Level: 1
- Imports: SimConstants (Level 0)
- Used by: session.py, outbound.py, client.py, __main__.py

Configuration Sources (precedence high to low):
1. Constructor arguments
2. Environment variables (SIMLINK_*)
3. .env file
4. Defaults defined here

Usage:
    >>> from simlink.settings import SimSettings
    >>> settings = SimSettings()  # loads from env
    >>> settings.ports
    (9003, 9002)
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from simlink.constants import SimConstants as c


class SimSettings(BaseSettings):
    """Simlink configuration with automatic env loading.

    Port Strategy:
    - primary_port: first port tried
    - fallback_port: alternated with the primary port on each reconnect

    Usage:
        settings = SimSettings()  # loads from env
        settings = SimSettings(host="sim-pc")  # override
    """

    model_config = SettingsConfigDict(
        env_prefix="SIMLINK_",
        frozen=True,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # =========================================================================
    # NETWORK
    # =========================================================================
    host: str = c.Network.LOCALHOST
    """Host used when the client endpoint is "auto"."""

    primary_port: int = Field(default=c.Network.PRIMARY_PORT, gt=0, lt=65536)
    fallback_port: int = Field(default=c.Network.FALLBACK_PORT, gt=0, lt=65536)
    open_timeout: float = Field(default=c.Network.OPEN_TIMEOUT, gt=0)
    max_message_size: int = Field(default=c.Network.MAX_MESSAGE_SIZE, gt=0)

    # =========================================================================
    # TIMING (in seconds)
    # =========================================================================
    reconnect_delay: float = Field(default=c.Timing.RECONNECT_DELAY, ge=0)
    reload_delay: float = Field(default=c.Timing.RELOAD_DELAY, ge=0)
    loading_threshold: float = c.Timing.LOADING_THRESHOLD
    """Silence (seconds) before loadingStateChanges(True). <= 0 disables."""

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================
    subscribe_precision: float = Field(default=c.Subscription.PRECISION, ge=0)
    variadic_precision: float = Field(
        default=c.Subscription.VARIADIC_PRECISION, ge=0
    )

    # =========================================================================
    # RECOVERY
    # =========================================================================
    enable_reload: bool = True
    """Schedule a full client reload when a send fails."""

    @model_validator(mode="after")
    def _check_ports(self) -> "SimSettings":
        if self.primary_port == self.fallback_port:
            msg = "primary_port and fallback_port must differ"
            raise ValueError(msg)
        return self

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def ports(self) -> tuple[int, int]:
        """Return (primary, fallback)."""
        return (self.primary_port, self.fallback_port)
