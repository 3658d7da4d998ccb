"""Tests for ProtocolRouter over the in-memory transport.

Collaborators are stubs; nothing leaves the process.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from hederaintel.agent.models.enums import Confidence
from hederaintel.agent.models.envelope import ProtocolEnvelope
from hederaintel.agent.models.report import AssetQuote, MarketReport, NarrativeSignal, NetworkHealthReport
from hederaintel.agent.protocol.chunking import ChunkCodec, encode_frames
from hederaintel.agent.router import AgentIdentity, ProtocolRouter
from hederaintel.agent.transport.memory import InMemoryTransport

PEER = "0.0.9001@0.0.7"


class StubReports:
    def __init__(self, *, summary: str = "BTC up 1.0% at $100.00.", delay: float = 0.0) -> None:
        self.summary = summary
        self.delay = delay
        self.failures = 0
        self.calls: list[tuple[list[str], str]] = []

    async def generate_report(self, assets, focus: str = "general") -> MarketReport:
        self.calls.append((list(assets), focus))
        if self.failures:
            self.failures -= 1
            msg = "price feed down"
            raise RuntimeError(msg)
        if self.delay:
            await asyncio.sleep(self.delay)
        return MarketReport(
            title="Market Intelligence Brief #1",
            focus=focus,
            summary=self.summary,
            assets=[AssetQuote(symbol=a, price="$100.00", change_24h="1.0%", market_cap="N/A") for a in assets],
            signals=[NarrativeSignal(narrative="BTC Bullish Momentum", score=0.6, evidence="up", action="watch")],
            confidence=Confidence.HIGH,
            action_items=["watch"],
        )


class StubNetwork:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_network_report(self) -> NetworkHealthReport:
        self.calls += 1
        return NetworkHealthReport(network="testnet", health_score=90)


@pytest.fixture
def reports() -> StubReports:
    return StubReports()


@pytest.fixture
def network() -> StubNetwork:
    return StubNetwork()


@pytest.fixture
async def router(
    transport: InMemoryTransport, reports: StubReports, network: StubNetwork
) -> AsyncIterator[ProtocolRouter]:
    inbound = await transport.create_channel("inbound")
    outbound = await transport.create_channel("outbound")
    identity = AgentIdentity(
        agent_name="HederaIntel",
        account_id="0.0.42",
        inbound_channel_id=inbound,
        outbound_channel_id=outbound,
    )
    r = ProtocolRouter(transport, reports, network, identity, generator_timeout=2.0)
    yield r
    await r.stop(timeout=1.0)


def _decode_data(payload: str | None) -> Any:
    try:
        return json.loads(payload)
    except (ValueError, TypeError):
        return None


def envelopes(transport: InMemoryTransport, channel_id: str) -> list[dict[str, Any]]:
    """Decoded envelopes published on *channel_id*, chunked ones reassembled."""
    codec = ChunkCodec()
    result = []
    for message in transport.messages(channel_id):
        payload = codec.unwrap(message.contents)
        if payload is not None:
            envelope = json.loads(payload)
            if not isinstance(envelope, dict) or "op" not in envelope:
                continue
            envelope["data"] = _decode_data(ProtocolEnvelope.model_validate(envelope).payload)
            result.append(envelope)
    return result


def responses(transport: InMemoryTransport, channel_id: str) -> list[dict[str, Any]]:
    return [e["data"] for e in envelopes(transport, channel_id) if e["op"] == "response"]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def peer_envelope(op: str, data: str = "", operator_id: str = PEER) -> bytes:
    return ProtocolEnvelope.create(op, operator_id, data, f"{op} from peer").to_wire()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def test_natural_language_answered_on_outbound(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    inbound = router.identity.inbound_channel_id
    await router.on_inbound_message(b"What's the price of BTC and eth?", inbound, sequence_number=7)
    await router.drain()

    [response] = responses(transport, router.identity.outbound_channel_id)
    assert response["status"] == "ok"
    assert response["type"] == "price_check"
    assert response["inResponseTo"] == "7"
    assert [a["symbol"] for a in response["assets"]] == ["BTC", "ETH"]
    assert reports.calls == [(["BTC", "ETH"], "prices")]


async def test_default_basket_when_no_assets_named(router: ProtocolRouter, reports: StubReports) -> None:
    response = await router.answer("give me a market intelligence report")

    assert response["type"] == "full_report"
    assert response["title"] == "Market Intelligence Brief #1"
    assert reports.calls == [(["BTC", "ETH", "SOL", "HBAR"], "general")]


async def test_capabilities_need_no_collaborator(router: ProtocolRouter, reports: StubReports) -> None:
    response = await router.answer("what can you do?")

    assert response["type"] == "capabilities"
    assert "price_check" in response["capabilities"]
    assert reports.calls == []


async def test_network_health_uses_both_collaborators(
    router: ProtocolRouter, reports: StubReports, network: StubNetwork
) -> None:
    response = await router.answer("how is the hedera network doing?")

    assert response["type"] == "network_health"
    assert response["summary"].startswith("Hedera network health: 90/100.")
    assert response["networkHealth"]["health_score"] == 90
    assert network.calls == 1
    assert reports.calls == [(["HBAR"], "hedera")]


async def test_direct_query_with_type_and_assets(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    body = {"type": "query", "queryType": "price_check", "assets": ["sol"]}
    await router.on_inbound_message(json.dumps(body).encode(), router.identity.inbound_channel_id, sequence_number=3)
    await router.drain()

    [response] = responses(transport, router.identity.outbound_channel_id)
    assert response["type"] == "price_check"
    assert response["inResponseTo"] == "3"
    assert reports.calls == [(["SOL"], "prices")]


async def test_direct_query_legacy_alias(router: ProtocolRouter) -> None:
    response = await router.answer_query({"protocol": "hedera-intel", "type": "query", "queryType": "market_report"})
    assert response["status"] == "ok"
    assert response["type"] == "full_report"


async def test_direct_query_text_goes_through_resolver(router: ProtocolRouter) -> None:
    response = await router.answer_query({"query": "any narratives today?"})
    assert response["type"] == "narrative_detection"


async def test_unknown_query_type_is_error_response(router: ProtocolRouter, reports: StubReports) -> None:
    response = await router.answer_query({"type": "query", "queryType": "teleport"})

    assert response["status"] == "error"
    assert "teleport" in response["message"]
    assert "price_check" in response["availableTypes"]
    assert reports.calls == []


async def test_generator_failure_then_recovery(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    reports.failures = 1
    inbound = router.identity.inbound_channel_id

    await router.on_inbound_message(b"price of btc", inbound, sequence_number=1)
    await router.drain()
    await router.on_inbound_message(b"price of btc", inbound, sequence_number=2)
    await router.drain()

    first, second = responses(transport, router.identity.outbound_channel_id)
    assert first == {
        "inResponseTo": "1",
        "status": "error",
        "message": "price feed down",
        "type": "price_check",
    }
    assert second["status"] == "ok"
    assert second["inResponseTo"] == "2"


async def test_generator_timeout_is_error_response(transport: InMemoryTransport, network: StubNetwork) -> None:
    channel = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", channel, channel)
    slow = ProtocolRouter(transport, StubReports(delay=5.0), network, identity, generator_timeout=0.05)

    response = await slow.answer("full report please")

    assert response["status"] == "error"
    assert response["type"] == "full_report"
    assert "Timed out" in response["message"]


async def test_oversized_response_is_chunked(transport: InMemoryTransport, network: StubNetwork) -> None:
    inbound = await transport.create_channel()
    outbound = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", inbound, outbound)
    router = ProtocolRouter(transport, StubReports(summary="s" * 3000), network, identity)

    await router.on_inbound_message(b"report on btc", inbound, sequence_number=1)
    await router.drain()

    frames = transport.messages(outbound)
    assert len(frames) > 1
    assert all(len(f.contents) <= transport.max_message_size for f in frames)
    [response] = responses(transport, outbound)
    assert response["summary"] == "s" * 3000


async def test_chunked_inbound_query_is_reassembled(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    text = "what is the price of hbar? " + "please " * 300
    inbound = router.identity.inbound_channel_id

    for seq, frame in enumerate(encode_frames(text.encode(), 1024), start=1):
        await router.on_inbound_message(frame, inbound, sequence_number=seq)
    await router.drain()

    [response] = responses(transport, router.identity.outbound_channel_id)
    assert response["type"] == "price_check"
    assert reports.calls == [(["HBAR"], "prices")]


async def test_publish_failure_does_not_raise(transport: InMemoryTransport, reports: StubReports) -> None:
    inbound = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", inbound, "0.0.404")
    router = ProtocolRouter(transport, reports, StubNetwork(), identity)

    await router.on_inbound_message(b"price of btc", inbound, sequence_number=1)
    assert await router.drain(timeout=1.0)
    assert reports.calls == [(["BTC"], "prices")]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


async def test_unknown_operation_gets_no_response(router: ProtocolRouter, transport: InMemoryTransport) -> None:
    inbound = router.identity.inbound_channel_id
    await router.on_inbound_message(peer_envelope("bogus", "hello"), inbound)
    await router.drain()

    assert transport.messages(inbound) == []
    assert transport.messages(router.identity.outbound_channel_id) == []


@pytest.mark.parametrize("op", ["register", "response", "heartbeat", "connection_created", "chat_response"])
async def test_passive_operations_ignored(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports, op: str
) -> None:
    await router.on_inbound_message(peer_envelope(op, "price of btc"), router.identity.inbound_channel_id)
    await router.drain()

    assert transport.messages(router.identity.outbound_channel_id) == []
    assert reports.calls == []


async def test_own_messages_ignored(router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports) -> None:
    echo = peer_envelope("message", "price of btc", operator_id=router.operator_id)
    await router.on_inbound_message(echo, router.identity.inbound_channel_id)
    await router.drain()

    assert reports.calls == []
    assert transport.messages(router.identity.outbound_channel_id) == []


async def test_message_envelope_answered_on_source_channel(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    inbound = router.identity.inbound_channel_id
    await router.on_inbound_message(peer_envelope("message", "what are the trends"), inbound)
    await router.drain()

    [envelope] = envelopes(transport, inbound)
    assert envelope["op"] == "response"
    assert envelope["operator_id"] == router.operator_id
    assert envelope["data"]["inResponseTo"] == PEER
    assert envelope["data"]["type"] == "narrative_detection"


async def test_message_falls_back_to_summary(router: ProtocolRouter, reports: StubReports) -> None:
    raw = ProtocolEnvelope(operation="message", operator_id=PEER, payload="", human_summary="price of eth")
    await router.on_inbound_message(raw.to_wire(), router.identity.inbound_channel_id)
    await router.drain()

    assert reports.calls == [(["ETH"], "prices")]


# ---------------------------------------------------------------------------
# Connection lifecycle (end to end through the transport)
# ---------------------------------------------------------------------------


async def test_connection_lifecycle(router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports) -> None:
    inbound = router.identity.inbound_channel_id
    await router.start()

    # 1. Connection request -> connection_created on inbound.
    await transport.publish(inbound, peer_envelope("connection_request"))
    await wait_until(lambda: any(e["op"] == "connection_created" for e in envelopes(transport, inbound)))
    created = next(e for e in envelopes(transport, inbound) if e["op"] == "connection_created")
    channel = created["data"]["connection_topic_id"]
    assert created["data"]["accepted"] is True
    assert created["data"]["requester"] == PEER
    assert router.registry.lookup(PEER).channel_id == channel

    # 2. Query on the connection channel -> response on the same channel.
    await transport.publish(channel, peer_envelope("message", "price of hbar"))
    await wait_until(lambda: any(e["op"] == "response" for e in envelopes(transport, channel)))
    [response] = [e["data"] for e in envelopes(transport, channel) if e["op"] == "response"]
    assert response["inResponseTo"] == PEER
    assert response["type"] == "price_check"

    # Our own response on the connection channel must not trigger another answer.
    await asyncio.sleep(0.05)
    await router.drain()
    assert len(reports.calls) == 1

    # 3. Close -> registry entry gone, listener stopped.
    await transport.publish(inbound, peer_envelope("close_connection"))
    await wait_until(lambda: router.registry.active_count == 0)
    assert channel not in router.status()["listening"]

    # 4. Reconnect -> fresh channel.
    await transport.publish(inbound, peer_envelope("connection_request"))
    await wait_until(lambda: router.registry.active_count == 1)
    assert router.registry.lookup(PEER).channel_id != channel


async def _connect(router: ProtocolRouter, transport: InMemoryTransport) -> str:
    await transport.publish(router.identity.inbound_channel_id, peer_envelope("connection_request"))
    await wait_until(lambda: router.registry.lookup(PEER) is not None)
    return router.registry.lookup(PEER).channel_id


async def test_untagged_text_on_connection_answered_there(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    await router.start()
    channel = await _connect(router, transport)

    await transport.publish(channel, json.dumps({"data": "price of btc", "operator_id": PEER}).encode())
    await wait_until(lambda: len(responses(transport, channel)) == 1)

    [response] = responses(transport, channel)
    assert response["inResponseTo"] == PEER
    assert response["type"] == "price_check"
    assert reports.calls == [(["BTC"], "prices")]
    assert responses(transport, router.identity.outbound_channel_id) == []


async def test_direct_query_on_connection_answered_there(
    router: ProtocolRouter, transport: InMemoryTransport, reports: StubReports
) -> None:
    await router.start()
    channel = await _connect(router, transport)

    body = {"type": "query", "queryType": "narrative_detection", "assets": ["eth"]}
    await transport.publish(channel, json.dumps(body).encode())
    await wait_until(lambda: len(responses(transport, channel)) == 1)

    [response] = responses(transport, channel)
    assert response["inResponseTo"] == PEER
    assert response["type"] == "narrative_detection"
    assert responses(transport, router.identity.outbound_channel_id) == []


async def test_connection_request_on_own_connection_channel(
    router: ProtocolRouter, transport: InMemoryTransport
) -> None:
    await router.start()
    first = await _connect(router, transport)

    await transport.publish(first, peer_envelope("connection_request"))
    await wait_until(lambda: router.registry.lookup(PEER).channel_id != first)
    second = router.registry.lookup(PEER).channel_id

    inbound = router.identity.inbound_channel_id
    await wait_until(lambda: sum(e["op"] == "connection_created" for e in envelopes(transport, inbound)) == 2)
    created = [e["data"] for e in envelopes(transport, inbound) if e["op"] == "connection_created"]
    assert created[-1]["connection_topic_id"] == second

    listening = router.status()["listening"]
    assert second in listening
    assert first not in listening


async def test_reconnect_replaces_listener(router: ProtocolRouter, transport: InMemoryTransport) -> None:
    inbound = router.identity.inbound_channel_id
    await router.on_inbound_message(peer_envelope("connection_request"), inbound)
    first = router.registry.lookup(PEER).channel_id
    await router.on_inbound_message(peer_envelope("connection_request"), inbound)
    second = router.registry.lookup(PEER).channel_id

    listening = router.status()["listening"]
    assert first != second
    assert second in listening
    assert first not in listening


async def test_heartbeat_on_start(router: ProtocolRouter, transport: InMemoryTransport) -> None:
    await router.start()

    [heartbeat] = envelopes(transport, router.identity.outbound_channel_id)
    assert heartbeat["op"] == "heartbeat"
    assert heartbeat["data"]["status"] == "online"
    assert heartbeat["data"]["agent"] == "HederaIntel"
    assert heartbeat["data"]["connections"] == 0
    assert "t" in heartbeat


async def test_heartbeat_repeats_when_interval_set(
    transport: InMemoryTransport, reports: StubReports, network: StubNetwork
) -> None:
    inbound = await transport.create_channel()
    outbound = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", inbound, outbound)
    router = ProtocolRouter(transport, reports, network, identity, heartbeat_interval=0.01)

    await router.start()
    await wait_until(lambda: len(transport.messages(outbound)) >= 3)
    await router.stop(timeout=1.0)


# ---------------------------------------------------------------------------
# Shutdown and status
# ---------------------------------------------------------------------------


async def test_stop_drains_inflight_responses(transport: InMemoryTransport, network: StubNetwork) -> None:
    inbound = await transport.create_channel()
    outbound = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", inbound, outbound)
    router = ProtocolRouter(transport, StubReports(delay=0.05), network, identity)

    await router.on_inbound_message(b"price of btc", inbound, sequence_number=1)
    assert router.inflight_count == 1
    await router.stop(timeout=2.0)

    assert len(responses(transport, outbound)) == 1
    assert router.registry.is_shutting_down


async def test_stop_cancels_stragglers(transport: InMemoryTransport, network: StubNetwork) -> None:
    inbound = await transport.create_channel()
    outbound = await transport.create_channel()
    identity = AgentIdentity("HederaIntel", "0.0.42", inbound, outbound)
    router = ProtocolRouter(transport, StubReports(delay=30.0), network, identity, generator_timeout=60.0)

    await router.on_inbound_message(b"price of btc", inbound, sequence_number=1)
    await router.stop(timeout=0.05)

    assert router.inflight_count == 0
    assert responses(transport, outbound) == []


async def test_connection_refused_after_stop(router: ProtocolRouter, transport: InMemoryTransport) -> None:
    await router.stop(timeout=0.1)
    await router.on_inbound_message(peer_envelope("connection_request"), router.identity.inbound_channel_id)

    assert router.registry.active_count == 0
    assert transport.messages(router.identity.inbound_channel_id) == []


async def test_status(router: ProtocolRouter) -> None:
    await router.start()
    status = router.status()

    assert status["agent"] == "HederaIntel"
    assert status["operator_id"] == f"{router.identity.inbound_channel_id}@0.0.42"
    assert status["listening"] == [router.identity.inbound_channel_id]
    assert status["active_connections"] == 0
    assert status["in_flight"] == 0
