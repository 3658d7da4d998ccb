"""Tests for channel setup, registration, peer queries and report publishing."""

from __future__ import annotations

import json

from hederaintel.agent.models.enums import Confidence
from hederaintel.agent.models.envelope import ProtocolEnvelope
from hederaintel.agent.models.report import MarketReport
from hederaintel.agent.node import content_hash, create_agent_channels, publish_report, query_agent, register_agent
from hederaintel.agent.protocol.chunking import ChunkCodec
from hederaintel.agent.router import AgentIdentity, ProtocolRouter
from hederaintel.agent.transport.memory import InMemoryTransport


def _report(summary: str = "BTC up 2.0% at $100.00.") -> MarketReport:
    return MarketReport(title="Market Intelligence Brief #1", summary=summary, confidence=Confidence.MEDIUM)


async def test_create_agent_channels(transport: InMemoryTransport) -> None:
    channels = await create_agent_channels(transport, "HederaIntel")

    inbound = await transport.channel_info(channels.inbound_channel_id)
    outbound = await transport.channel_info(channels.outbound_channel_id)
    assert inbound.memo == "hcs-10:inbound:HederaIntel - Market Intelligence Agent"
    assert outbound.memo == "hcs-10:outbound:HederaIntel - Activity Log"


async def test_register_agent(transport: InMemoryTransport) -> None:
    channels = await create_agent_channels(transport, "HederaIntel")
    registry = await transport.create_channel("registry")
    identity = AgentIdentity("HederaIntel", "0.0.42", channels.inbound_channel_id, channels.outbound_channel_id)
    router = ProtocolRouter(transport, None, None, identity)

    result = await register_agent(router, registry)

    assert result == {"operator_id": router.operator_id, "registry_channel_id": registry, "sequence_number": 1}
    [message] = transport.messages(registry)
    envelope = ProtocolEnvelope.model_validate_json(message.contents)
    assert envelope.operation == "register"
    assert envelope.timestamp is None
    data = json.loads(envelope.payload)
    assert data["inbound_topic"] == channels.inbound_channel_id
    assert data["outbound_topic"] == channels.outbound_channel_id

    [announcement] = transport.messages(channels.outbound_channel_id)
    assert ProtocolEnvelope.model_validate_json(announcement.contents).operation == "register"


async def test_query_agent(transport: InMemoryTransport) -> None:
    target = await transport.create_channel()

    sequence_number = await query_agent(transport, target, "price of hbar?", "0.0.5@0.0.6")

    assert sequence_number == 1
    envelope = ProtocolEnvelope.model_validate_json(transport.messages(target)[0].contents)
    assert envelope.operation == "message"
    assert envelope.operator_id == "0.0.5@0.0.6"
    assert envelope.payload == "price of hbar?"


async def test_publish_report(transport: InMemoryTransport) -> None:
    channel = await transport.create_channel()

    published = await publish_report(transport, channel, _report(), agent_name="HederaIntel")

    assert not published.chunked
    record = json.loads(transport.messages(channel)[0].contents)
    assert record["type"] == "market_intelligence"
    assert record["agent"] == "HederaIntel"
    assert record["report"]["hash"] == content_hash("BTC up 2.0% at $100.00.")
    assert record["report"]["confidence"] == "medium"


async def test_publish_oversized_report_is_chunked(transport: InMemoryTransport) -> None:
    channel = await transport.create_channel()

    published = await publish_report(transport, channel, _report("é" * 2000))

    assert published.chunked
    assert published.sequence_number == len(published.sequence_numbers)
    codec = ChunkCodec()
    payloads = [codec.unwrap(m.contents) for m in transport.messages(channel)]
    assert payloads[:-1] == [None] * (len(payloads) - 1)
    assert json.loads(payloads[-1])["report"]["summary"] == "é" * 2000


def test_content_hash() -> None:
    assert len(content_hash("abc")) == 16
    assert content_hash("abc") == content_hash("abc")
    assert content_hash("abc") != content_hash("abd")
