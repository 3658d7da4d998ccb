"""Peer connection record kept by the connection registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class PeerConnection:
    """An established sub-channel dedicated to one remote agent.

    Created by the connection registry on a connection request; removed only
    on an explicit close.
    """

    peer_operator_id: str
    channel_id: str
    established_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    memo: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "peer_operator_id": self.peer_operator_id,
            "channel_id": self.channel_id,
            "established_at": self.established_at.isoformat(),
        }
