"""Agent configuration loaded from HINTEL_* environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from hederaintel.agent.errors import ConfigurationError


class AgentSettings(BaseSettings):
    """HederaIntel agent settings.

    All fields are read from environment variables with the ``HINTEL_`` prefix.
    For example, ``HINTEL_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="HINTEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit one JSON record per line instead of the console format."""

    # -- Identity --------------------------------------------------------------
    agent_name: str = "HederaIntel"
    network: Literal["testnet", "mainnet"] = "testnet"
    account_id: str | None = None
    """Account the agent operates as.  Combined with the inbound channel id
    into the operator id (``<inbound>@<account>``)."""

    # -- Transport -------------------------------------------------------------
    redis_url: str | None = None
    """Redis connection string for the stream transport."""

    channel_prefix: str = "hcs:"
    """Namespace for every Redis key the transport touches."""

    inbound_channel_id: str | None = None
    outbound_channel_id: str | None = None
    registry_channel_id: str | None = None

    max_message_size: int = 1024
    """Per-message byte ceiling enforced by the transport."""

    # -- Protocol --------------------------------------------------------------
    generator_timeout: float = 60.0
    """Upper bound in seconds for a single report / network-health call."""

    heartbeat_interval: float | None = None
    """Repeat the heartbeat every N seconds.  ``None`` sends it once at start."""

    reassembly_ttl: float = 300.0
    max_pending_reassemblies: int = 256
    max_fragments: int = 64

    default_assets: str = "BTC,ETH,SOL,HBAR"
    """Comma-separated basket used when a query names no asset."""

    # -- Collaborators ---------------------------------------------------------
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    mirror_node_url: str | None = None
    """Mirror node REST root; the public node for ``network`` when unset."""
    http_timeout: float = 10.0

    # -- Status API ------------------------------------------------------------
    status_host: str = "127.0.0.1"
    status_port: int | None = None

    graceful_shutdown_timeout: float = 30.0
    """Seconds to wait for in-flight responses to be published on shutdown."""

    # -- Helpers ---------------------------------------------------------------

    @property
    def asset_basket(self) -> list[str]:
        return [a.strip().upper() for a in self.default_assets.split(",") if a.strip()]

    def require_account_id(self) -> str:
        if not self.account_id:
            msg = "HINTEL_ACCOUNT_ID is not set"
            raise ConfigurationError(msg)
        return self.account_id

    def require_redis_url(self) -> str:
        if not self.redis_url:
            msg = "HINTEL_REDIS_URL is not set"
            raise ConfigurationError(msg)
        return self.redis_url


def get_settings() -> AgentSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> AgentSettings:
    return AgentSettings()
