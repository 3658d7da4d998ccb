"""Exception hierarchy for the agent runtime.

Per-message failures never escape the router; these types exist so that
transports and the CLI can signal *what* went wrong.
"""

from __future__ import annotations


class HederaIntelError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(HederaIntelError):
    """Required configuration is missing or invalid.  Fatal at startup."""


class TransportError(HederaIntelError):
    """A publish, subscribe or channel operation failed."""


class MessageTooLargeError(TransportError):
    """Payload exceeds the transport's per-message ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Message of {size} bytes exceeds the {limit}-byte transport limit")
        self.size = size
        self.limit = limit


class ChannelNotFoundError(TransportError, LookupError):
    """Referenced channel does not exist on the transport."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Channel '{channel_id}' not found")
        self.channel_id = channel_id


class ShuttingDownError(RuntimeError):
    """Raised when attempting to open a connection during shutdown."""
