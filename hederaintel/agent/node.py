"""Agent lifecycle operations outside the inbound loop.

Channel setup, registry announcement, querying another agent and
publishing a standalone market report.  Used by the CLI.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from hederaintel import __version__
from hederaintel.agent.models.enums import Operation
from hederaintel.agent.models.envelope import PROTOCOL_TAG, ProtocolEnvelope
from hederaintel.agent.protocol.chunking import encode_frames
from hederaintel.agent.router import AGENT_CAPABILITIES, AGENT_DESCRIPTION

if TYPE_CHECKING:
    from hederaintel.agent.models.report import MarketReport
    from hederaintel.agent.router import ProtocolRouter
    from hederaintel.agent.transport.base import Transport


@dataclass(frozen=True)
class AgentChannels:
    inbound_channel_id: str
    outbound_channel_id: str


@dataclass(frozen=True)
class PublishResult:
    channel_id: str
    sequence_numbers: list[int]

    @property
    def sequence_number(self) -> int:
        """Sequence number of the last frame, which completes the message."""
        return self.sequence_numbers[-1]

    @property
    def chunked(self) -> bool:
        return len(self.sequence_numbers) > 1


def content_hash(text: str) -> str:
    """Short sha256 fingerprint attached to published reports."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


async def _publish(transport: Transport, channel_id: str, message: bytes) -> PublishResult:
    # Transport errors propagate; callers are CLI commands that report them.
    limit = transport.max_message_size
    frames = [message] if len(message) <= limit else encode_frames(message, limit)
    sequence_numbers = [await transport.publish(channel_id, frame) for frame in frames]
    return PublishResult(channel_id=channel_id, sequence_numbers=sequence_numbers)


async def create_agent_channels(transport: Transport, agent_name: str) -> AgentChannels:
    """Allocate the public inbound channel and the outbound activity log."""
    inbound = await transport.create_channel(f"{PROTOCOL_TAG}:inbound:{agent_name} - Market Intelligence Agent")
    outbound = await transport.create_channel(f"{PROTOCOL_TAG}:outbound:{agent_name} - Activity Log")
    logger.info("Created agent channels: inbound={} outbound={}", inbound, outbound)
    return AgentChannels(inbound_channel_id=inbound, outbound_channel_id=outbound)


async def register_agent(router: ProtocolRouter, registry_channel_id: str) -> dict[str, Any]:
    """Publish a ``register`` envelope on the registry channel.

    The registration is also announced on the agent's outbound channel.
    """
    identity = router.identity
    envelope = ProtocolEnvelope.create(
        Operation.REGISTER,
        router.operator_id,
        {
            "name": identity.agent_name,
            "description": AGENT_DESCRIPTION,
            "capabilities": list(AGENT_CAPABILITIES),
            "type": "autonomous",
            "inbound_topic": identity.inbound_channel_id,
            "outbound_topic": identity.outbound_channel_id,
            "created": datetime.now(UTC).isoformat(),
            "version": __version__,
        },
        f"{identity.agent_name} - Autonomous AI Market Intelligence Agent",
        stamped=False,
    )
    published = await _publish(router.transport, registry_channel_id, envelope.to_wire())
    logger.info("Agent registered as {} (registry seq #{})", router.operator_id, published.sequence_number)

    await router.publish_outbound(
        Operation.REGISTER,
        {
            "name": identity.agent_name,
            "capabilities": list(AGENT_CAPABILITIES),
            "inbound_topic": identity.inbound_channel_id,
        },
    )
    return {
        "operator_id": router.operator_id,
        "registry_channel_id": registry_channel_id,
        "sequence_number": published.sequence_number,
    }


async def query_agent(
    transport: Transport,
    target_inbound_channel_id: str,
    text: str,
    operator_id: str,
    *,
    agent_name: str = "HederaIntel",
) -> int:
    """Send *text* as a ``message`` envelope to another agent's inbound channel."""
    envelope = ProtocolEnvelope.create(
        Operation.MESSAGE, operator_id, text, f"Query from {agent_name}", stamped=False
    )
    published = await _publish(transport, target_inbound_channel_id, envelope.to_wire())
    logger.info("Query sent to {} (seq #{})", target_inbound_channel_id, published.sequence_number)
    return published.sequence_number


async def publish_report(
    transport: Transport,
    channel_id: str,
    report: MarketReport,
    *,
    agent_name: str = "HederaIntel",
) -> PublishResult:
    """Publish a ``market_intelligence`` record, chunked when oversized."""
    record = {
        "type": "market_intelligence",
        "version": "1.0",
        "agent": agent_name,
        "timestamp": datetime.now(UTC).isoformat(),
        "report": {
            "title": report.title,
            "summary": report.summary,
            "signals": [s.model_dump(mode="json") for s in report.signals],
            "confidence": report.confidence.value,
            "hash": content_hash(report.summary),
        },
    }
    message = json.dumps(record, separators=(",", ":")).encode("utf-8")
    published = await _publish(transport, channel_id, message)
    logger.info(
        "Published report to {} (seq #{}, {} frame(s))",
        channel_id,
        published.sequence_number,
        len(published.sequence_numbers),
    )
    return published
