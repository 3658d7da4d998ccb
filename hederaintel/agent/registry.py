"""In-process connection registry.

Maps a remote peer's operator id to the sub-channel dedicated to it.
Ephemeral -- empty on process restart; the channels themselves persist on
the transport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from hederaintel.agent.errors import ShuttingDownError
from hederaintel.agent.models.connection import PeerConnection
from hederaintel.agent.models.envelope import PROTOCOL_TAG

if TYPE_CHECKING:
    from hederaintel.agent.transport.base import Transport


@dataclass(frozen=True)
class ConnectionResult:
    """Outcome of ``create_connection``.

    ``replaced`` holds the previous connection of the same peer, if any, so
    the caller can stop listening on its channel.
    """

    connection: PeerConnection
    replaced: PeerConnection | None = None

    @property
    def channel_id(self) -> str:
        return self.connection.channel_id


class ConnectionRegistry:
    """Registry of active peer connections.

    Every inbound connection request is accepted (open agent policy).  A
    second request from a connected peer replaces the old entry: last request
    wins.  Allocation and insert happen under one lock, so concurrent
    requests never interleave between check and write.
    """

    def __init__(self, transport: Transport, *, agent_name: str = "HederaIntel") -> None:
        self._transport = transport
        self._agent_name = agent_name
        self._connections: dict[str, PeerConnection] = {}
        self._lock = asyncio.Lock()
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    async def create_connection(self, peer_operator_id: str) -> ConnectionResult:
        """Allocate a sub-channel for *peer_operator_id* and record it.

        Raises ``ShuttingDownError`` once ``begin_shutdown`` was called and
        ``TransportError`` if the channel cannot be allocated.
        """
        memo = f"{PROTOCOL_TAG}:connection:{self._agent_name}<>{peer_operator_id}"
        async with self._lock:
            if self._shutting_down:
                raise ShuttingDownError
            channel_id = await self._transport.create_channel(memo)
            connection = PeerConnection(peer_operator_id=peer_operator_id, channel_id=channel_id, memo=memo)
            replaced = self._connections.get(peer_operator_id)
            self._connections[peer_operator_id] = connection

        if replaced is not None:
            logger.info(
                "Registry: peer {} reconnected, channel {} replaces {}",
                peer_operator_id,
                channel_id,
                replaced.channel_id,
            )
        else:
            logger.debug("Registry: peer {} connected on channel {}", peer_operator_id, channel_id)
        return ConnectionResult(connection=connection, replaced=replaced)

    async def close(self, peer_operator_id: str) -> PeerConnection | None:
        """Remove the peer's connection.  Unknown peers are a no-op."""
        async with self._lock:
            connection = self._connections.pop(peer_operator_id, None)
        if connection:
            logger.debug("Registry: peer {} closed channel {}", peer_operator_id, connection.channel_id)
        return connection

    # -- Query -----------------------------------------------------------------

    def lookup(self, peer_operator_id: str) -> PeerConnection | None:
        return self._connections.get(peer_operator_id)

    def lookup_channel(self, channel_id: str) -> PeerConnection | None:
        """Return the connection that owns *channel_id*, if any."""
        for connection in self._connections.values():
            if connection.channel_id == channel_id:
                return connection
        return None

    def all_connections(self) -> list[PeerConnection]:
        """Return a snapshot of all active connections."""
        return list(self._connections.values())

    @property
    def active_count(self) -> int:
        return len(self._connections)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Refuse further connection requests."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new connections")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down
