"""Protocol router -- the agent's inbound dispatch loop.

Every raw transport message flows through one pipeline::

    transport -> ChunkCodec.unwrap -> classify -> dispatch -> response

The router owns one listener task per subscribed channel (the inbound
channel plus one per peer connection).  Lifecycle operations run inline in
channel order; query handling is spawned as a tracked task so a slow report
never holds up other traffic on the same channel.

Per-message failures never escape a listener: collaborator errors become
``status=error`` responses, transport errors on publish are logged and the
message is abandoned.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from hederaintel import __version__
from hederaintel.agent.errors import ConfigurationError, ShuttingDownError, TransportError
from hederaintel.agent.models.enums import Operation, QueryOperation
from hederaintel.agent.models.envelope import ProtocolEnvelope, operator_id_for
from hederaintel.agent.models.query import QueryIntent, error_response, ok_response
from hederaintel.agent.protocol.chunking import ChunkCodec, encode_frames
from hederaintel.agent.protocol.classifier import DirectQuery, NaturalLanguage, Structured, classify
from hederaintel.agent.protocol.intent import resolve, resolve_query_type
from hederaintel.agent.registry import ConnectionRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from hederaintel.agent.intel.base import NetworkHealthReporter, ReportGenerator
    from hederaintel.agent.models.connection import PeerConnection
    from hederaintel.agent.models.report import MarketReport
    from hederaintel.agent.settings import AgentSettings
    from hederaintel.agent.transport.base import Subscription, Transport

DEFAULT_ASSETS: tuple[str, ...] = ("BTC", "ETH", "SOL", "HBAR")

AGENT_DESCRIPTION = (
    "AI-powered crypto market intelligence agent. Analyzes market data, detects "
    "narratives and monitors Hedera network health."
)

AGENT_CAPABILITIES: tuple[str, ...] = (
    "market_report",
    "price_check",
    "narrative_detection",
    "hedera_network_stats",
    "natural_language_query",
)

USAGE_HINTS: tuple[str, ...] = (
    "Ask about prices: 'What's the price of BTC and ETH?'",
    "Detect narratives: 'What are the current market trends?'",
    "Hedera intel: 'How is the Hedera network doing?'",
    "Full report: 'Give me a market intelligence report'",
)


@dataclass(frozen=True)
class AgentIdentity:
    """Who the agent is on the transport."""

    agent_name: str
    account_id: str
    inbound_channel_id: str
    outbound_channel_id: str | None = None

    @property
    def operator_id(self) -> str:
        return operator_id_for(self.inbound_channel_id, self.account_id)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _dump(models: list[Any]) -> list[dict[str, Any]]:
    return [m.model_dump(mode="json") for m in models]


def _peer_text(text: str) -> str:
    """Query text of an untagged peer message: its ``data``, else ``m``, else *text*."""
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        return text
    if isinstance(obj, dict):
        for key in ("data", "m"):
            value = obj.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return text


class ProtocolRouter:
    """Routes inbound messages to handlers and publishes responses.

    Parameters
    ----------
    transport:
        Channel transport shared with the connection registry.
    reports:
        Market report collaborator.
    network:
        Network health collaborator.
    identity:
        Agent name, account and the inbound/outbound channel ids.
    generator_timeout:
        Upper bound in seconds for one query's collaborator calls.
    heartbeat_interval:
        Repeat the heartbeat every N seconds; ``None`` sends it once at start.
    """

    def __init__(
        self,
        transport: Transport,
        reports: ReportGenerator,
        network: NetworkHealthReporter,
        identity: AgentIdentity,
        *,
        registry: ConnectionRegistry | None = None,
        codec: ChunkCodec | None = None,
        default_assets: tuple[str, ...] | list[str] = DEFAULT_ASSETS,
        generator_timeout: float = 60.0,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.transport = transport
        self.reports = reports
        self.network = network
        self.identity = identity
        self.registry = registry or ConnectionRegistry(transport, agent_name=identity.agent_name)
        self.codec = codec or ChunkCodec()
        self.default_assets = list(default_assets) or list(DEFAULT_ASSETS)
        self.generator_timeout = generator_timeout
        self.heartbeat_interval = heartbeat_interval

        self._handlers: dict[QueryOperation, Callable[[QueryIntent], Awaitable[dict[str, Any]]]] = {
            QueryOperation.PRICE_CHECK: self._price_check,
            QueryOperation.NARRATIVE_DETECTION: self._narrative_detection,
            QueryOperation.NETWORK_HEALTH: self._network_health,
            QueryOperation.CAPABILITIES: self._capabilities,
            QueryOperation.FULL_REPORT: self._full_report,
        }
        self._listeners: dict[str, asyncio.Task[None]] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._started_at: float | None = None

    @classmethod
    def from_settings(
        cls,
        transport: Transport,
        reports: ReportGenerator,
        network: NetworkHealthReporter,
        settings: AgentSettings,
        *,
        inbound_channel_id: str | None = None,
        outbound_channel_id: str | None = None,
    ) -> ProtocolRouter:
        """Build a router from ``HINTEL_*`` settings.

        Channel ids passed explicitly take precedence over the settings.
        Raises ``ConfigurationError`` when the account id is missing.
        """
        inbound = inbound_channel_id or settings.inbound_channel_id
        if not inbound:
            msg = "HINTEL_INBOUND_CHANNEL_ID is not set"
            raise ConfigurationError(msg)
        identity = AgentIdentity(
            agent_name=settings.agent_name,
            account_id=settings.require_account_id(),
            inbound_channel_id=inbound,
            outbound_channel_id=outbound_channel_id or settings.outbound_channel_id,
        )
        codec = ChunkCodec(
            ttl=settings.reassembly_ttl,
            max_pending=settings.max_pending_reassemblies,
            max_fragments=settings.max_fragments,
        )
        return cls(
            transport,
            reports,
            network,
            identity,
            codec=codec,
            default_assets=settings.asset_basket,
            generator_timeout=settings.generator_timeout,
            heartbeat_interval=settings.heartbeat_interval,
        )

    @property
    def operator_id(self) -> str:
        return self.identity.operator_id

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the inbound channel and announce the agent."""
        self._started_at = time.monotonic()
        await self._add_listener(self.identity.inbound_channel_id)
        logger.info(
            "{} listening on {} (operator_id={})",
            self.identity.agent_name,
            self.identity.inbound_channel_id,
            self.operator_id,
        )

        await self.send_heartbeat()
        if self.heartbeat_interval:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self.heartbeat_interval))

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop accepting traffic, then drain in-flight responses.

        Queries still running after *timeout* seconds are cancelled.
        """
        logger.info("Router shutting down (in_flight={})", len(self._inflight))
        self.registry.begin_shutdown()

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for task in listeners:
            task.cancel()
        await asyncio.gather(*listeners, *(t for t in [self._heartbeat_task] if t), return_exceptions=True)
        self._heartbeat_task = None

        if self._inflight:
            logger.info("Waiting for {} in-flight responses (timeout={}s)...", len(self._inflight), timeout)
        if not await self.drain(timeout):
            pending = set(self._inflight)
            logger.warning("Cancelling {} responses after timeout", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight query handlers to finish.

        Returns ``True`` once none are left, ``False`` if *timeout* expired
        first.  Handlers spawned while waiting are waited for too.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._inflight:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            _, pending = await asyncio.wait(set(self._inflight), timeout=remaining)
            if pending:
                return False
        return True

    # -- Listeners -------------------------------------------------------------

    async def _add_listener(self, channel_id: str) -> None:
        # Subscribe before returning so nothing published afterwards is missed.
        subscription = await self.transport.subscribe(channel_id)
        task = asyncio.create_task(self._listen(channel_id, subscription), name=f"listen:{channel_id}")
        self._listeners[channel_id] = task

    def _remove_listener(self, channel_id: str) -> None:
        task = self._listeners.pop(channel_id, None)
        if task is not None:
            task.cancel()
            logger.debug("Stopped listening on {}", channel_id)

    async def _listen(self, channel_id: str, subscription: Subscription) -> None:
        try:
            async for message in subscription:
                try:
                    await self.on_inbound_message(
                        message.contents,
                        channel_id,
                        sequence_number=message.sequence_number,
                    )
                except Exception:
                    logger.exception("Error handling message {} on {}", message.sequence_number, channel_id)
        except TransportError as exc:
            logger.error("Subscription to {} failed: {}", channel_id, exc)
        finally:
            await subscription.aclose()

    # -- Inbound ---------------------------------------------------------------

    async def on_inbound_message(
        self,
        raw: bytes,
        source_channel: str,
        *,
        sequence_number: int | None = None,
    ) -> None:
        """Single entry point for one raw message read from *source_channel*."""
        payload = self.codec.unwrap(raw)
        if payload is None:
            return

        classified = classify(payload)
        # Untagged traffic on a peer's connection channel is answered there.
        connection = self.registry.lookup_channel(source_channel)
        match classified:
            case Structured(envelope=envelope):
                await self._on_envelope(envelope, source_channel)
            case DirectQuery(body=body):
                self._spawn(self._answer_direct(body, sequence_number, connection))
            case NaturalLanguage(text=text):
                if connection is not None:
                    text = _peer_text(text)
                logger.info("Natural language query: {!r}", text[:80])
                self._spawn(self._answer_text(text, sequence_number, connection))

    async def _on_envelope(self, envelope: ProtocolEnvelope, source_channel: str) -> None:
        if envelope.operator_id == self.operator_id:
            return

        op = envelope.operation
        if op == Operation.CONNECTION_REQUEST:
            await self._on_connection_request(envelope)
        elif op == Operation.CLOSE_CONNECTION:
            await self._on_close_connection(envelope)
        elif op == Operation.MESSAGE:
            logger.info("Message from {} on {}", envelope.operator_id, source_channel)
            self._spawn(self._answer_envelope(envelope, source_channel))
        elif not envelope.is_known_operation:
            logger.warning("Unknown operation {!r} from {}", op, envelope.operator_id)
        else:
            logger.debug("Ignoring {} from {}", op, envelope.operator_id)

    async def _on_connection_request(self, envelope: ProtocolEnvelope) -> None:
        peer = envelope.operator_id
        logger.info("Connection request from {}", peer)
        try:
            result = await self.registry.create_connection(peer)
        except ShuttingDownError:
            logger.info("Refusing connection from {}: shutting down", peer)
            return
        except TransportError as exc:
            logger.error("Could not allocate a channel for {}: {}", peer, exc)
            return

        await self._add_listener(result.channel_id)

        accepted = ProtocolEnvelope.create(
            Operation.CONNECTION_CREATED,
            self.operator_id,
            {
                "connection_topic_id": result.channel_id,
                "accepted": True,
                "agent": self.identity.agent_name,
                "capabilities": list(AGENT_CAPABILITIES),
                "message": "Connected! Ask me anything about crypto markets, narratives, or Hedera network health.",
                "requester": peer,
            },
            f"Connection accepted by {self.identity.agent_name}",
        )
        await self._publish(self.identity.inbound_channel_id, accepted.to_wire())
        logger.info("Connection established with {} on {}", peer, result.channel_id)

        # Last: the request may have arrived on the replaced channel, whose
        # listener is the task running this handler.
        if result.replaced is not None:
            self._remove_listener(result.replaced.channel_id)

    async def _on_close_connection(self, envelope: ProtocolEnvelope) -> None:
        connection = await self.registry.close(envelope.operator_id)
        if connection is not None:
            self._remove_listener(connection.channel_id)
            logger.info("Connection closed: {}", envelope.operator_id)

    # -- Query handling --------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _answer_envelope(self, envelope: ProtocolEnvelope, channel_id: str) -> None:
        text = envelope.payload or envelope.human_summary
        response = await self.answer(text)
        await self._respond(channel_id, Operation.RESPONSE, {"inResponseTo": envelope.operator_id, **response})

    async def _answer_direct(
        self,
        body: dict[str, Any],
        sequence_number: int | None,
        connection: PeerConnection | None,
    ) -> None:
        response = await self.answer_query(body)
        await self._reply(response, sequence_number, connection)

    async def _answer_text(
        self,
        text: str,
        sequence_number: int | None,
        connection: PeerConnection | None,
    ) -> None:
        response = await self.answer(text)
        await self._reply(response, sequence_number, connection)

    async def _reply(
        self,
        response: dict[str, Any],
        sequence_number: int | None,
        connection: PeerConnection | None,
    ) -> None:
        if connection is None:
            await self._respond_outbound(response, sequence_number)
            return
        await self._respond(
            connection.channel_id,
            Operation.RESPONSE,
            {"inResponseTo": connection.peer_operator_id, **response},
        )

    async def answer(self, text: str) -> dict[str, Any]:
        """Resolve *text* to an intent and run it.  Nothing is published."""
        return await self.run(resolve(text))

    async def answer_query(self, body: dict[str, Any]) -> dict[str, Any]:
        """Run a structured direct query body.  Nothing is published."""
        query_type = body.get("queryType") or body.get("query_type")
        assets = body.get("assets")
        assets = [str(a).upper() for a in assets] if isinstance(assets, list) else []

        if query_type:
            operation = resolve_query_type(str(query_type))
            if operation is None:
                logger.warning("Unknown query type {!r}", query_type)
                return error_response(
                    f"Unknown query type: {query_type}",
                    str(query_type),
                    availableTypes=[op.value for op in QueryOperation],
                )
            intent = QueryIntent(operation=operation, assets=assets)
        elif isinstance(body.get("query"), str):
            intent = resolve(body["query"])
            if assets:
                intent = QueryIntent(operation=intent.operation, assets=assets)
        else:
            intent = QueryIntent(operation=QueryOperation.FULL_REPORT, assets=assets)
        return await self.run(intent)

    async def run(self, intent: QueryIntent) -> dict[str, Any]:
        """Invoke the handler for *intent* under the generator timeout."""
        handler = self._handlers[intent.operation]
        try:
            return await asyncio.wait_for(handler(intent), timeout=self.generator_timeout)
        except TimeoutError:
            logger.warning("{} timed out after {}s", intent.operation, self.generator_timeout)
            return error_response(f"Timed out after {self.generator_timeout}s", intent.operation)
        except Exception as exc:
            logger.exception("{} failed", intent.operation)
            return error_response(str(exc) or type(exc).__name__, intent.operation)

    def _assets(self, intent: QueryIntent) -> list[str]:
        return list(intent.assets) or list(self.default_assets)

    async def _price_check(self, intent: QueryIntent) -> dict[str, Any]:
        report = await self.reports.generate_report(self._assets(intent), "prices")
        return ok_response(
            intent.operation,
            summary=report.summary,
            assets=_dump(report.assets),
            confidence=report.confidence.value,
            generatedAt=report.generated_at.isoformat(),
        )

    async def _narrative_detection(self, intent: QueryIntent) -> dict[str, Any]:
        report = await self.reports.generate_report(self._assets(intent), "narratives")
        return ok_response(
            intent.operation,
            summary=report.summary,
            narratives=_dump(report.signals),
            actionItems=report.action_items,
            confidence=report.confidence.value,
            generatedAt=report.generated_at.isoformat(),
        )

    async def _network_health(self, intent: QueryIntent) -> dict[str, Any]:
        network_report = await self.network.generate_network_report()
        market: MarketReport = await self.reports.generate_report(["HBAR"], "hedera")
        return ok_response(
            intent.operation,
            summary=f"Hedera network health: {network_report.health_score}/100. {market.summary}",
            networkHealth=network_report.model_dump(mode="json"),
            marketData=_dump(market.assets),
            signals=_dump(market.signals),
            generatedAt=_timestamp(),
        )

    async def _capabilities(self, intent: QueryIntent) -> dict[str, Any]:
        return ok_response(
            intent.operation,
            agent=self.identity.agent_name,
            description=AGENT_DESCRIPTION,
            capabilities=list(AGENT_CAPABILITIES),
            usage=list(USAGE_HINTS),
            version=__version__,
        )

    async def _full_report(self, intent: QueryIntent) -> dict[str, Any]:
        report = await self.reports.generate_report(self._assets(intent), "general")
        return ok_response(
            intent.operation,
            title=report.title,
            summary=report.summary,
            assets=_dump(report.assets),
            signals=_dump(report.signals),
            actionItems=report.action_items,
            confidence=report.confidence.value,
            generatedAt=report.generated_at.isoformat(),
        )

    # -- Outbound --------------------------------------------------------------

    async def _respond_outbound(self, response: dict[str, Any], sequence_number: int | None) -> None:
        channel_id = self.identity.outbound_channel_id
        if channel_id is None:
            logger.debug("No outbound channel configured, dropping {} response", response.get("type"))
            return
        in_response_to = str(sequence_number) if sequence_number is not None else None
        await self._respond(channel_id, Operation.RESPONSE, {"inResponseTo": in_response_to, **response})

    async def _respond(self, channel_id: str, operation: Operation, data: dict[str, Any]) -> None:
        summary = data.get("summary") or f"{self.identity.agent_name} {operation}"
        envelope = ProtocolEnvelope.create(operation, self.operator_id, data, summary)
        await self._publish(channel_id, envelope.to_wire())

    async def publish_outbound(self, operation: Operation, data: dict[str, Any], summary: str | None = None) -> None:
        """Publish an envelope on the outbound channel, if one is configured."""
        channel_id = self.identity.outbound_channel_id
        if channel_id is None:
            return
        envelope = ProtocolEnvelope.create(
            operation, self.operator_id, data, summary or f"{self.identity.agent_name} {operation}"
        )
        await self._publish(channel_id, envelope.to_wire())

    async def _publish(self, channel_id: str, message: bytes) -> list[int]:
        """Publish *message*, chunked when it exceeds the transport ceiling.

        Transport errors are logged and the message is abandoned; returns
        the sequence numbers of the frames that were published.
        """
        limit = self.transport.max_message_size
        frames = [message] if len(message) <= limit else encode_frames(message, limit)
        published: list[int] = []
        try:
            for frame in frames:
                published.append(await self.transport.publish(channel_id, frame))
        except TransportError as exc:
            logger.error("Publish to {} failed after {}/{} frames: {}", channel_id, len(published), len(frames), exc)
        else:
            if len(frames) > 1:
                logger.debug("Published {} bytes to {} in {} chunks", len(message), channel_id, len(frames))
        return published

    # -- Heartbeat -------------------------------------------------------------

    async def send_heartbeat(self) -> None:
        await self.publish_outbound(
            Operation.HEARTBEAT,
            {
                "agent": self.identity.agent_name,
                "status": "online",
                "capabilities": list(AGENT_CAPABILITIES),
                "uptime": self.uptime,
                "connections": self.registry.active_count,
                "timestamp": _timestamp(),
            },
        )
        logger.debug("Heartbeat sent")

    async def _heartbeat_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.send_heartbeat()

    # -- Introspection ---------------------------------------------------------

    @property
    def uptime(self) -> float:
        if self._started_at is None:
            return 0.0
        return round(time.monotonic() - self._started_at, 3)

    def status(self) -> dict[str, Any]:
        return {
            "agent": self.identity.agent_name,
            "operator_id": self.operator_id,
            "inbound_channel_id": self.identity.inbound_channel_id,
            "outbound_channel_id": self.identity.outbound_channel_id,
            "connections": [c.to_dict() for c in self.registry.all_connections()],
            "active_connections": self.registry.active_count,
            "listening": sorted(self._listeners),
            "in_flight": len(self._inflight),
            "pending_reassemblies": self.codec.pending_count,
            "uptime": self.uptime,
            "shutting_down": self.registry.is_shutting_down,
        }

