from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import click

from hederaintel.agent.errors import HederaIntelError

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from hederaintel.agent.models.report import MarketReport, NetworkHealthReport
    from hederaintel.agent.settings import AgentSettings
    from hederaintel.agent.transport.base import ChannelMessage
    from hederaintel.agent.transport.redis_stream import RedisStreamTransport


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run *coro*; agent errors abort the command with exit code 1."""
    try:
        return asyncio.run(coro)
    except HederaIntelError as exc:
        raise click.ClickException(str(exc)) from exc


def _settings() -> AgentSettings:
    from hederaintel.agent.settings import get_settings

    return get_settings()


def _open_transport(settings: AgentSettings) -> RedisStreamTransport:
    from hederaintel.agent.transport.redis_stream import RedisStreamTransport

    return RedisStreamTransport.from_url(
        settings.require_redis_url(),
        prefix=settings.channel_prefix,
        max_message_size=settings.max_message_size,
    )


def _collaborators(settings: AgentSettings) -> tuple[Any, Any]:
    from hederaintel.agent.intel import IntelEngine, NetworkAnalytics

    return (
        IntelEngine(base_url=settings.coingecko_url, timeout=settings.http_timeout),
        NetworkAnalytics(settings.network, base_url=settings.mirror_node_url, timeout=settings.http_timeout),
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_report(report: MarketReport) -> str:
    lines = [report.title, "=" * len(report.title), report.summary, ""]
    for asset in report.assets:
        lines.append(f"  {asset.symbol:<5} {asset.price:>14}  {asset.change_24h:>7}  mcap {asset.market_cap}")
    if report.signals:
        lines.append("")
        lines.append("Signals:")
        lines.extend(f"  [{s.score:.2f}] {s.narrative}: {s.evidence}" for s in report.signals)
    lines.append("")
    lines.append(f"Confidence: {report.confidence}")
    lines.extend(f"  - {item}" for item in report.action_items)
    return "\n".join(lines)


def _render_network(report: NetworkHealthReport) -> str:
    lines = [f"Hedera {report.network} health: {report.health_score}/100"]
    if report.supply:
        lines.append(f"  Supply:   {report.supply.released_supply} / {report.supply.total_supply} HBAR released")
    if report.topic_activity:
        activity = report.topic_activity
        lines.append(f"  Topics:   {activity.message_count} recent messages on {activity.unique_topics} topics")
    if report.transactions:
        tx = report.transactions
        lines.append(f"  Transfers: {tx.count} recent, {tx.total_hbar:,} HBAR moved (avg {tx.avg_hbar_per_tx:,})")
    if report.nodes:
        lines.append(f"  Nodes:    {report.nodes.total_nodes} ({report.nodes.consensus_nodes} with endpoints)")
    return "\n".join(lines)


def _render_response(response: dict[str, Any]) -> str:
    if response.get("status") == "error":
        return f"Error: {response.get('message')}"
    if response.get("type") == "capabilities":
        lines = [f"{response['agent']}: {response['description']}", "", "Capabilities:"]
        lines.extend(f"  - {c}" for c in response["capabilities"])
        lines.append("")
        lines.extend(response["usage"])
        return "\n".join(lines)

    lines = [response.get("summary", "")]
    for asset in response.get("assets") or response.get("marketData") or []:
        lines.append(f"  {asset['symbol']:<5} {asset['price']:>14}  {asset['change_24h']:>7}")
    for signal in response.get("narratives") or response.get("signals") or []:
        lines.append(f"  * {signal['narrative']} ({signal['score']:.2f})")
    lines.extend(f"  - {item}" for item in response.get("actionItems", []))
    return "\n".join(lines)


def _render_feed_item(message: ChannelMessage, payload: bytes) -> str:
    text = payload.decode("utf-8", errors="replace")
    try:
        record = json.loads(text)
    except (ValueError, RecursionError):
        record = None

    lines = [f"--- #{message.sequence_number} at {message.timestamp.isoformat()} ---"]
    report = record.get("report") if isinstance(record, dict) else None
    if isinstance(report, dict):
        lines.append(f"  Title:   {report.get('title', '')}")
        lines.append(f"  Summary: {report.get('summary', '')}")
    else:
        lines.append(f"  Content: {text[:200]}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.option("--log-level", default=None, help="Log level (default: from HINTEL_LOG_LEVEL or INFO).")
def main(log_level: str | None) -> None:
    """HederaIntel - market intelligence agent speaking the HCS-10 protocol."""
    from hederaintel.agent.log import setup_logging

    settings = _settings()
    setup_logging(log_level or settings.log_level, agent_name=settings.agent_name, serialize=settings.log_json)


@main.command()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Append channel ids to this file.")
def setup(env_file: str | None) -> None:
    """Create the agent's inbound and outbound channels."""
    from hederaintel.agent.node import create_agent_channels

    settings = _settings()

    async def _setup() -> Any:
        transport = _open_transport(settings)
        try:
            return await create_agent_channels(transport, settings.agent_name)
        finally:
            await transport.close()

    channels = _run(_setup())
    lines = [
        f"HINTEL_INBOUND_CHANNEL_ID={channels.inbound_channel_id}",
        f"HINTEL_OUTBOUND_CHANNEL_ID={channels.outbound_channel_id}",
    ]
    click.echo("\n".join(lines))
    if env_file:
        with open(env_file, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        click.echo(f"Channel ids written to {env_file}.")


@main.command()
@click.option("--assets", default=None, help="Comma-separated symbols (default: HINTEL_DEFAULT_ASSETS).")
@click.option("--focus", default="general", show_default=True, help="Report focus label.")
@click.option("--publish", "channel_id", default=None, help="Publish the report to this channel.")
def report(assets: str | None, focus: str, channel_id: str | None) -> None:
    """Generate a market intelligence report."""
    from hederaintel.agent.node import publish_report

    settings = _settings()
    basket = [a.strip().upper() for a in assets.split(",") if a.strip()] if assets else settings.asset_basket

    async def _report() -> None:
        from hederaintel.agent.intel import IntelEngine

        engine = IntelEngine(base_url=settings.coingecko_url, timeout=settings.http_timeout)
        try:
            result = await engine.generate_report(basket, focus)
        finally:
            await engine.aclose()
        click.echo(_render_report(result))

        if channel_id:
            transport = _open_transport(settings)
            try:
                published = await publish_report(transport, channel_id, result, agent_name=settings.agent_name)
            finally:
                await transport.close()
            click.echo(f"\nPublished to {channel_id} (seq #{published.sequence_number}).")

    _run(_report())


@main.command()
def network() -> None:
    """Show Hedera network health."""
    settings = _settings()

    async def _network() -> NetworkHealthReport:
        from hederaintel.agent.intel import NetworkAnalytics

        analytics = NetworkAnalytics(settings.network, base_url=settings.mirror_node_url, timeout=settings.http_timeout)
        try:
            return await analytics.generate_network_report()
        finally:
            await analytics.aclose()

    click.echo(_render_network(_run(_network())))


@main.command()
@click.option("--status-port", default=None, type=int, help="Serve the status API on this port.")
def listen(status_port: int | None) -> None:
    """Run the agent: answer queries and accept connections."""
    settings = _settings()
    port = status_port or settings.status_port

    async def _listen() -> None:
        from hederaintel.agent.router import ProtocolRouter

        # Fail on missing configuration before anything is opened.
        settings.require_account_id()
        settings.require_redis_url()
        transport = _open_transport(settings)
        engine, analytics = _collaborators(settings)
        router = None
        try:
            router = ProtocolRouter.from_settings(transport, engine, analytics, settings)
            await router.start()
            if port:
                import uvicorn

                from hederaintel.agent.app import create_status_app

                server = uvicorn.Server(
                    uvicorn.Config(
                        create_status_app(router),
                        host=settings.status_host,
                        port=port,
                        log_level="warning",  # uvicorn's own logging is intercepted by loguru
                    )
                )
                await server.serve()
            else:
                await asyncio.Event().wait()
        finally:
            if router is not None:
                await router.stop(settings.graceful_shutdown_timeout)
            await engine.aclose()
            await analytics.aclose()
            await transport.close()

    try:
        _run(_listen())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@main.command()
@click.option("--registry", "registry_channel_id", default=None, help="Registry channel (default: HINTEL_REGISTRY_CHANNEL_ID).")
def register(registry_channel_id: str | None) -> None:
    """Announce the agent on the registry channel."""
    from hederaintel.agent.node import register_agent
    from hederaintel.agent.router import ProtocolRouter

    settings = _settings()
    target = registry_channel_id or settings.registry_channel_id
    if not target:
        msg = "HINTEL_REGISTRY_CHANNEL_ID is not set"
        raise click.ClickException(msg)

    async def _register() -> dict[str, Any]:
        transport = _open_transport(settings)
        engine, analytics = _collaborators(settings)
        try:
            router = ProtocolRouter.from_settings(transport, engine, analytics, settings)
            return await register_agent(router, target)
        finally:
            await engine.aclose()
            await analytics.aclose()
            await transport.close()

    result = _run(_register())
    click.echo(f"Registered as {result['operator_id']} (registry {target}, seq #{result['sequence_number']}).")


@main.command()
@click.argument("target")
@click.argument("text")
def query(target: str, text: str) -> None:
    """Send TEXT to the agent whose inbound channel is TARGET."""
    from hederaintel.agent.errors import ConfigurationError
    from hederaintel.agent.models.envelope import operator_id_for
    from hederaintel.agent.node import query_agent

    settings = _settings()

    async def _query() -> int:
        if not settings.inbound_channel_id:
            msg = "HINTEL_INBOUND_CHANNEL_ID is not set"
            raise ConfigurationError(msg)
        operator_id = operator_id_for(settings.inbound_channel_id, settings.require_account_id())
        transport = _open_transport(settings)
        try:
            return await query_agent(transport, target, text, operator_id, agent_name=settings.agent_name)
        finally:
            await transport.close()

    sequence_number = _run(_query())
    click.echo(f"Query sent to {target} (seq #{sequence_number}).")


@main.command()
@click.argument("channel_id", required=False)
@click.option("--limit", default=None, type=int, help="Stop after this many messages.")
def subscribe(channel_id: str | None, limit: int | None) -> None:
    """Stream messages from CHANNEL_ID (default: HINTEL_OUTBOUND_CHANNEL_ID)."""
    settings = _settings()
    target = channel_id or settings.outbound_channel_id
    if not target:
        msg = "HINTEL_OUTBOUND_CHANNEL_ID is not set"
        raise click.ClickException(msg)

    async def _subscribe() -> None:
        from hederaintel.agent.protocol.chunking import ChunkCodec

        codec = ChunkCodec(
            ttl=settings.reassembly_ttl,
            max_pending=settings.max_pending_reassemblies,
            max_fragments=settings.max_fragments,
        )
        transport = _open_transport(settings)
        try:
            subscription = await transport.subscribe(target)
            click.echo(f"Listening on {target}. Press Ctrl+C to stop.")
            seen = 0
            try:
                async for message in subscription:
                    # Chunk frames print once, on the frame that completes them.
                    payload = codec.unwrap(message.contents)
                    if payload is None:
                        continue
                    click.echo(_render_feed_item(message, payload))
                    seen += 1
                    if limit and seen >= limit:
                        break
            finally:
                await subscription.aclose()
        finally:
            await transport.close()

    try:
        _run(_subscribe())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@main.command()
@click.argument("channel_id", required=False)
def info(channel_id: str | None) -> None:
    """Show a channel's memo and message count (default: HINTEL_INBOUND_CHANNEL_ID)."""
    settings = _settings()
    target = channel_id or settings.inbound_channel_id
    if not target:
        msg = "HINTEL_INBOUND_CHANNEL_ID is not set"
        raise click.ClickException(msg)

    async def _info() -> Any:
        transport = _open_transport(settings)
        try:
            return await transport.channel_info(target)
        finally:
            await transport.close()

    channel = _run(_info())
    click.echo(f"Channel:  {channel.channel_id}")
    click.echo(f"Memo:     {channel.memo}")
    click.echo(f"Messages: {channel.sequence_number}")


@main.command()
def chat() -> None:
    """Interactive chat.  Works offline when no Redis is configured."""
    settings = _settings()

    async def _chat() -> None:
        from anyio import to_thread

        from hederaintel.agent.models.enums import Operation
        from hederaintel.agent.node import create_agent_channels
        from hederaintel.agent.router import AgentIdentity, ProtocolRouter
        from hederaintel.agent.transport.memory import InMemoryTransport

        online = bool(settings.redis_url and settings.inbound_channel_id and settings.account_id)
        if online:
            transport = _open_transport(settings)
            identity = AgentIdentity(
                agent_name=settings.agent_name,
                account_id=settings.require_account_id(),
                inbound_channel_id=settings.inbound_channel_id,
                outbound_channel_id=settings.outbound_channel_id,
            )
        else:
            transport = InMemoryTransport(max_message_size=settings.max_message_size)
            channels = await create_agent_channels(transport, settings.agent_name)
            identity = AgentIdentity(
                agent_name=settings.agent_name,
                account_id=settings.account_id or "offline",
                inbound_channel_id=channels.inbound_channel_id,
                outbound_channel_id=channels.outbound_channel_id,
            )

        engine, analytics = _collaborators(settings)
        router = ProtocolRouter(
            transport,
            engine,
            analytics,
            identity,
            default_assets=settings.asset_basket,
            generator_timeout=settings.generator_timeout,
        )
        click.echo(f"{settings.agent_name} chat ({'online' if online else 'offline'}). Type 'quit' or 'exit' to leave.")
        try:
            while True:
                try:
                    line = await to_thread.run_sync(input, "You: ")
                except EOFError:
                    break
                text = line.strip()
                if not text or text.lower() in ("quit", "exit"):
                    break
                response = await router.answer(text)
                click.echo(_render_response(response))
                await router.publish_outbound(Operation.CHAT_RESPONSE, {"query": text, **response})
        finally:
            await engine.aclose()
            await analytics.aclose()
            await transport.close()
        click.echo("Goodbye!")

    _run(_chat())


if __name__ == "__main__":
    main()
