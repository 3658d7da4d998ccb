"""In-process transport.

Channels live in a dict of append-only lists; subscribers wait on a
per-channel ``asyncio.Condition``.  Used by the test-suite and by the
offline chat mode, where no Redis is configured.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from hederaintel.agent.errors import ChannelNotFoundError, MessageTooLargeError, TransportError
from hederaintel.agent.transport.base import ChannelInfo, ChannelMessage

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class _Channel:
    channel_id: str
    memo: str
    log: list[ChannelMessage] = field(default_factory=list)
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)


class MemorySubscription:
    """Cursor over one in-memory channel."""

    def __init__(self, channel: _Channel, start: int, on_close: Callable[[MemorySubscription], None]) -> None:
        self._channel = channel
        self._cursor = start
        self._closed = False
        self._on_close = on_close

    def __aiter__(self) -> MemorySubscription:
        return self

    async def __anext__(self) -> ChannelMessage:
        channel = self._channel
        async with channel.changed:
            await channel.changed.wait_for(lambda: self._closed or self._cursor < len(channel.log))
            if self._cursor >= len(channel.log):
                raise StopAsyncIteration
            message = channel.log[self._cursor]
            self._cursor += 1
            return message

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._on_close(self)
        async with self._channel.changed:
            self._channel.changed.notify_all()


class InMemoryTransport:
    """Process-local implementation of the Transport protocol."""

    def __init__(self, *, max_message_size: int = 1024, first_channel_number: int = 1001) -> None:
        self.max_message_size = max_message_size
        self._channels: dict[str, _Channel] = {}
        self._numbers = itertools.count(first_channel_number)
        self._subscriptions: list[MemorySubscription] = []
        self._closed = False

    def _get(self, channel_id: str) -> _Channel:
        channel = self._channels.get(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        return channel

    def _check_open(self) -> None:
        if self._closed:
            msg = "Transport is closed"
            raise TransportError(msg)

    # -- Transport protocol ----------------------------------------------------

    async def create_channel(self, memo: str = "") -> str:
        self._check_open()
        channel_id = f"0.0.{next(self._numbers)}"
        self._channels[channel_id] = _Channel(channel_id=channel_id, memo=memo)
        return channel_id

    async def publish(self, channel_id: str, message: bytes) -> int:
        self._check_open()
        if len(message) > self.max_message_size:
            raise MessageTooLargeError(len(message), self.max_message_size)
        channel = self._get(channel_id)
        async with channel.changed:
            sequence_number = len(channel.log) + 1
            channel.log.append(
                ChannelMessage(
                    channel_id=channel_id,
                    sequence_number=sequence_number,
                    contents=bytes(message),
                    timestamp=datetime.now(UTC),
                )
            )
            channel.changed.notify_all()
        return sequence_number

    async def subscribe(self, channel_id: str) -> MemorySubscription:
        self._check_open()
        channel = self._get(channel_id)
        subscription = MemorySubscription(channel, start=len(channel.log), on_close=self._subscriptions.remove)
        self._subscriptions.append(subscription)
        return subscription

    async def channel_info(self, channel_id: str) -> ChannelInfo:
        channel = self._get(channel_id)
        return ChannelInfo(channel_id=channel_id, memo=channel.memo, sequence_number=len(channel.log))

    async def close(self) -> None:
        self._closed = True
        for subscription in list(self._subscriptions):
            await subscription.aclose()

    # -- Inspection ------------------------------------------------------------

    def messages(self, channel_id: str) -> list[ChannelMessage]:
        """Snapshot of everything published on a channel so far."""
        return list(self._get(channel_id).log)

    def channel_ids(self) -> list[str]:
        return list(self._channels)
