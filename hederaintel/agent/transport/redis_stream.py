"""Redis Stream transport.

Each channel is one Redis stream.  Key layout (``prefix`` defaults to
``hcs:``)::

    {prefix}channels                 counter used to allocate channel ids
    {prefix}channel:{id}             the stream (fields: seq, data)
    {prefix}channel:{id}:seq         per-channel sequence counter
    {prefix}channel:{id}:meta        hash with memo / created_at

The sequence number is assigned by a Lua script in the same atomic step as
the ``XADD``, so stream order and sequence order always agree even with
concurrent publishers.
"""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from hederaintel.agent.errors import ChannelNotFoundError, MessageTooLargeError, TransportError
from hederaintel.agent.transport.base import ChannelInfo, ChannelMessage

if TYPE_CHECKING:
    from redis.commands.core import AsyncScript

_PUBLISH_SCRIPT = """
local seq = redis.call('INCR', KEYS[2])
redis.call('XADD', KEYS[1], '*', 'seq', seq, 'data', ARGV[1])
return seq
"""


def _stream_id_timestamp(entry_id: bytes | str) -> datetime:
    raw = entry_id.decode() if isinstance(entry_id, bytes) else entry_id
    millis = int(raw.split("-", 1)[0])
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


class RedisSubscription:
    """``XREAD BLOCK`` loop over one channel stream."""

    def __init__(
        self,
        transport: RedisStreamTransport,
        channel_id: str,
        last_id: bytes | str,
    ) -> None:
        self._transport = transport
        self._channel_id = channel_id
        self._stream_key = transport.stream_key(channel_id)
        self._last_id = last_id
        self._buffer: deque[ChannelMessage] = deque()
        self._closed = False

    def __aiter__(self) -> RedisSubscription:
        return self

    async def __anext__(self) -> ChannelMessage:
        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            await self._fill()
        return self._buffer.popleft()

    async def _fill(self) -> None:
        try:
            response = await self._transport.redis.xread(
                {self._stream_key: self._last_id},
                count=self._transport.batch_size,
                block=self._transport.block_ms,
            )
        except RedisError as exc:
            msg = f"XREAD on channel {self._channel_id} failed: {exc}"
            raise TransportError(msg) from exc

        for _stream, entries in response or []:
            for entry_id, fields in entries:
                self._last_id = entry_id
                self._buffer.append(
                    ChannelMessage(
                        channel_id=self._channel_id,
                        sequence_number=int(fields[b"seq"]),
                        contents=bytes(fields[b"data"]),
                        timestamp=_stream_id_timestamp(entry_id),
                    )
                )

    async def aclose(self) -> None:
        # A pending XREAD returns within block_ms; listeners are normally cancelled first.
        self._closed = True


class RedisStreamTransport:
    """Transport backed by Redis streams.

    Pass an existing ``redis.asyncio.Redis`` client (``decode_responses``
    must be ``False``), or use ``from_url`` to let the transport own it.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        prefix: str = "hcs:",
        max_message_size: int = 1024,
        block_ms: int = 5000,
        batch_size: int = 100,
        owns_client: bool = False,
    ) -> None:
        self.redis = redis
        self.prefix = prefix
        self.max_message_size = max_message_size
        self.block_ms = block_ms
        self.batch_size = batch_size
        self._owns_client = owns_client
        self._publish_script: AsyncScript = redis.register_script(_PUBLISH_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisStreamTransport:
        client = aioredis.from_url(
            url,
            decode_responses=False,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        return cls(client, owns_client=True, **kwargs)

    # -- Keys ------------------------------------------------------------------

    def stream_key(self, channel_id: str) -> str:
        return f"{self.prefix}channel:{channel_id}"

    def _seq_key(self, channel_id: str) -> str:
        return f"{self.prefix}channel:{channel_id}:seq"

    def _meta_key(self, channel_id: str) -> str:
        return f"{self.prefix}channel:{channel_id}:meta"

    async def _ensure_channel(self, channel_id: str) -> None:
        try:
            exists = await self.redis.exists(self._meta_key(channel_id))
        except RedisError as exc:
            msg = f"Lookup of channel {channel_id} failed: {exc}"
            raise TransportError(msg) from exc
        if not exists:
            raise ChannelNotFoundError(channel_id)

    # -- Transport protocol ----------------------------------------------------

    async def create_channel(self, memo: str = "") -> str:
        try:
            number = await self.redis.incr(f"{self.prefix}channels")
            channel_id = f"0.0.{number}"
            await self.redis.hset(
                self._meta_key(channel_id),
                mapping={"memo": memo, "created_at": datetime.now(UTC).isoformat()},
            )
        except RedisError as exc:
            msg = f"Channel creation failed: {exc}"
            raise TransportError(msg) from exc
        logger.debug("Redis transport: created channel {} ({})", channel_id, memo)
        return channel_id

    async def publish(self, channel_id: str, message: bytes) -> int:
        if len(message) > self.max_message_size:
            raise MessageTooLargeError(len(message), self.max_message_size)
        await self._ensure_channel(channel_id)
        try:
            sequence_number = await self._publish_script(
                keys=[self.stream_key(channel_id), self._seq_key(channel_id)],
                args=[message],
            )
        except RedisError as exc:
            msg = f"Publish to channel {channel_id} failed: {exc}"
            raise TransportError(msg) from exc
        return int(sequence_number)

    async def subscribe(self, channel_id: str) -> RedisSubscription:
        await self._ensure_channel(channel_id)
        try:
            tail = await self.redis.xrevrange(self.stream_key(channel_id), count=1)
        except RedisError as exc:
            msg = f"Subscribe to channel {channel_id} failed: {exc}"
            raise TransportError(msg) from exc
        last_id = tail[0][0] if tail else b"0-0"
        return RedisSubscription(self, channel_id, last_id)

    async def channel_info(self, channel_id: str) -> ChannelInfo:
        await self._ensure_channel(channel_id)
        try:
            memo = await self.redis.hget(self._meta_key(channel_id), "memo")
            sequence_number = await self.redis.get(self._seq_key(channel_id))
        except RedisError as exc:
            msg = f"Info for channel {channel_id} failed: {exc}"
            raise TransportError(msg) from exc
        return ChannelInfo(
            channel_id=channel_id,
            memo=memo.decode() if memo else "",
            sequence_number=int(sequence_number or 0),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.redis.aclose()
            logger.info("Redis: closed")
