"""Transport interface for channel-based messaging.

A transport is an append-only, per-channel ordered log.  Publishing returns
the channel's monotonically increasing sequence number; subscribing yields
messages published *after* the subscription was opened, in publish order.
Each message is limited to ``max_message_size`` bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime


@dataclass(frozen=True)
class ChannelMessage:
    """One message as delivered by a subscription."""

    channel_id: str
    sequence_number: int
    contents: bytes
    timestamp: datetime


@dataclass(frozen=True)
class ChannelInfo:
    channel_id: str
    memo: str
    sequence_number: int


@runtime_checkable
class Subscription(Protocol):
    """Async stream of messages for one channel.  Ends after ``aclose``."""

    def __aiter__(self) -> AsyncIterator[ChannelMessage]: ...

    async def __anext__(self) -> ChannelMessage: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Async protocol implemented by every channel transport."""

    max_message_size: int

    async def create_channel(self, memo: str = "") -> str:
        """Allocate a new channel and return its id."""
        ...

    async def publish(self, channel_id: str, message: bytes) -> int:
        """Append *message* and return its sequence number.

        Raises ``MessageTooLargeError`` above the ceiling and
        ``ChannelNotFoundError`` for unknown channels.
        """
        ...

    async def subscribe(self, channel_id: str) -> Subscription:
        """Open a subscription starting after the current tail of the channel."""
        ...

    async def channel_info(self, channel_id: str) -> ChannelInfo:
        """Memo and current sequence number of a channel."""
        ...

    async def close(self) -> None:
        """Release transport resources.  Open subscriptions end."""
        ...
