"""Ledger network health reporter.

Queries the Hedera mirror node REST API for supply, recent topic traffic,
recent transfers and the node list.  Each lookup fails independently to
``None``; the health score only counts the lookups that answered.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from hederaintel.agent.models.report import (
    NetworkHealthReport,
    NodeStats,
    SupplyStats,
    TopicActivity,
    TransferStats,
)

MIRROR_NODES = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
}

TINYBARS_PER_HBAR = 100_000_000

_LOOKUP_ERRORS = (httpx.HTTPError, ValueError, TypeError, KeyError)


def health_score(report: NetworkHealthReport) -> int:
    score = 50
    if report.topic_activity and report.topic_activity.message_count > 0:
        score += 15
    if report.transactions and report.transactions.count > 0:
        score += 15
    if report.nodes and report.nodes.total_nodes > 0:
        score += 10
    if report.supply:
        score += 10
    return min(score, 100)


class NetworkAnalytics:
    """Network health reporter backed by a mirror node."""

    def __init__(
        self,
        network: str = "testnet",
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.network = "mainnet" if network == "mainnet" else "testnet"
        self.base_url = (base_url or MIRROR_NODES[self.network]).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    # -- Lookups ---------------------------------------------------------------

    async def get_network_supply(self) -> SupplyStats | None:
        try:
            data = await self._get("/api/v1/network/supply")
            total = data.get("total_supply")
            released = data.get("released_supply")
            return SupplyStats(
                total_supply=f"{int(total) / TINYBARS_PER_HBAR:,.0f}" if total else "N/A",
                released_supply=f"{int(released) / TINYBARS_PER_HBAR:,.0f}" if released else "N/A",
            )
        except _LOOKUP_ERRORS as exc:
            logger.warning("Supply fetch failed: {}", exc)
            return None

    async def get_topic_activity(self, limit: int = 25) -> TopicActivity | None:
        """Recent consensus-topic traffic, an indicator of network usage."""
        try:
            data = await self._get("/api/v1/topics/messages", {"limit": limit, "order": "desc"})
            messages = data.get("messages") or []
            if not messages:
                return TopicActivity()

            topics = {m.get("topic_id") for m in messages}
            stamps = sorted(float(m["consensus_timestamp"]) for m in messages if m.get("consensus_timestamp"))
            avg_interval = None
            if len(stamps) > 1:
                avg_interval = round((stamps[-1] - stamps[0]) / (len(stamps) - 1), 2)
            return TopicActivity(
                message_count=len(messages),
                unique_topics=len(topics),
                avg_interval_seconds=avg_interval,
            )
        except _LOOKUP_ERRORS as exc:
            logger.warning("Topic activity fetch failed: {}", exc)
            return None

    async def get_recent_transfers(self, limit: int = 25) -> TransferStats | None:
        try:
            data = await self._get(
                "/api/v1/transactions",
                {"limit": limit, "order": "desc", "transactiontype": "CRYPTOTRANSFER"},
            )
            transactions = data.get("transactions") or []
            if not transactions:
                return TransferStats()

            tinybars = sum(
                t["amount"] for tx in transactions for t in tx.get("transfers") or [] if t.get("amount", 0) > 0
            )
            return TransferStats(
                count=len(transactions),
                total_hbar=round(tinybars / TINYBARS_PER_HBAR),
                avg_hbar_per_tx=round(tinybars / TINYBARS_PER_HBAR / len(transactions)),
            )
        except _LOOKUP_ERRORS as exc:
            logger.warning("Transaction fetch failed: {}", exc)
            return None

    async def get_node_count(self) -> NodeStats | None:
        try:
            data = await self._get("/api/v1/network/nodes", {"limit": 100})
            nodes = data.get("nodes")
            if nodes is None:
                return None
            return NodeStats(
                total_nodes=len(nodes),
                consensus_nodes=sum(1 for n in nodes if n.get("service_endpoints")),
            )
        except _LOOKUP_ERRORS as exc:
            logger.warning("Node info fetch failed: {}", exc)
            return None

    # -- Report ----------------------------------------------------------------

    async def generate_network_report(self) -> NetworkHealthReport:
        logger.info("Gathering {} network analytics", self.network)
        supply, activity, transfers, nodes = await asyncio.gather(
            self.get_network_supply(),
            self.get_topic_activity(),
            self.get_recent_transfers(),
            self.get_node_count(),
        )
        report = NetworkHealthReport(
            network=self.network,
            supply=supply,
            topic_activity=activity,
            transactions=transfers,
            nodes=nodes,
        )
        report.health_score = health_score(report)
        logger.info("Network report complete. Health: {}/100", report.health_score)
        return report

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
