"""Market intelligence engine.

Fetches spot prices from the CoinGecko public API and turns them into a
``MarketReport``: formatted asset figures, narrative signals ranked by score,
a one-paragraph summary and a short list of action items.  Scoring is
deterministic for a given price snapshot.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from loguru import logger

from hederaintel.agent.models.enums import Confidence
from hederaintel.agent.models.report import AssetQuote, MarketReport, NarrativeSignal, PriceQuote

if TYPE_CHECKING:
    from collections.abc import Sequence

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "HBAR": "hedera-hashgraph",
    "AVAX": "avalanche-2",
    "NEAR": "near",
    "DOT": "polkadot",
}

MOMENTUM_THRESHOLD = 5.0

# ---------------------------------------------------------------------------
# Pure analysis helpers
# ---------------------------------------------------------------------------


def format_usd(value: float) -> str:
    if value >= 1:
        return f"${value:,.2f}"
    return f"${value:.4f}"


def format_assets(prices: dict[str, PriceQuote]) -> list[AssetQuote]:
    return [
        AssetQuote(
            symbol=symbol,
            price=format_usd(quote.price),
            change_24h=f"{quote.change_24h or 0:.1f}%",
            market_cap=f"${quote.market_cap / 1e9:.1f}B" if quote.market_cap else "N/A",
        )
        for symbol, quote in prices.items()
    ]


def detect_narratives(prices: dict[str, PriceQuote]) -> list[NarrativeSignal]:
    """Momentum and ecosystem narratives, highest score first."""
    signals: list[NarrativeSignal] = []

    for symbol, quote in prices.items():
        change = quote.change_24h
        if not change:
            continue
        if change > MOMENTUM_THRESHOLD:
            signals.append(
                NarrativeSignal(
                    narrative=f"{symbol} Bullish Momentum",
                    score=min(change / 10, 1.0),
                    evidence=f"{symbol} up {change:.1f}% in 24h",
                    action=f"Monitor {symbol} for continuation above {format_usd(quote.price)}",
                )
            )
        elif change < -MOMENTUM_THRESHOLD:
            signals.append(
                NarrativeSignal(
                    narrative=f"{symbol} Correction",
                    score=min(abs(change) / 15, 1.0),
                    evidence=f"{symbol} down {abs(change):.1f}% in 24h",
                    action="Watch for support at lower levels. Potential accumulation zone.",
                )
            )

    if "HBAR" in prices:
        signals.append(
            NarrativeSignal(
                narrative="Hedera Enterprise Adoption",
                score=0.7,
                evidence=(
                    f"HBAR at {format_usd(prices['HBAR'].price)}. Consensus Service usage keeps growing "
                    "for tokenization, supply chain and agent coordination."
                ),
                action="Monitor Hedera DeFi TVL and enterprise partnership announcements.",
            )
        )
    if "SOL" in prices:
        signals.append(
            NarrativeSignal(
                narrative="Solana AI Agent Economy",
                score=0.8,
                evidence=f"SOL at {format_usd(prices['SOL'].price)}. Agent ecosystems on Solana keep expanding.",
                action="Track agent-eligible bounties and payment integrations on Solana.",
            )
        )

    signals.sort(key=lambda s: s.score, reverse=True)
    return signals


def summarize(prices: dict[str, PriceQuote], signals: list[NarrativeSignal]) -> str:
    parts: list[str] = []
    btc = prices.get("BTC")
    if btc is not None:
        change = btc.change_24h or 0
        direction = "up" if change > 0 else "down"
        parts.append(f"BTC {direction} {abs(change):.1f}% at {format_usd(btc.price)}.")
    if signals:
        top = signals[0]
        parts.append(f"Top narrative: {top.narrative} (confidence: {top.score * 100:.0f}%).")
    parts.append(f"Report covers {len(prices)} assets with {len(signals)} active signals.")
    return " ".join(parts)


def rate_confidence(prices: dict[str, PriceQuote], signals: list[NarrativeSignal]) -> Confidence:
    if prices and signals:
        return Confidence.HIGH
    if prices or signals:
        return Confidence.MEDIUM
    return Confidence.LOW


def action_items(signals: list[NarrativeSignal]) -> list[str]:
    actions = [s.action for s in signals[:3] if s.action]
    return actions or ["Continue monitoring. No strong signals detected."]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class IntelEngine:
    """Report generator backed by CoinGecko spot prices."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._base_url = base_url.rstrip("/")
        self.report_count = 0

    async def fetch_prices(self, assets: Sequence[str]) -> dict[str, PriceQuote]:
        """Spot prices keyed by symbol.  Returns ``{}`` if the API is unreachable."""
        symbols = [a.upper() for a in assets if a.upper() in COINGECKO_IDS]
        if not symbols:
            return {}

        try:
            response = await self._client.get(
                f"{self._base_url}/simple/price",
                params={
                    "ids": ",".join(COINGECKO_IDS[s] for s in symbols),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                    "include_market_cap": "true",
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Price fetch failed: {}", exc)
            return {}

        prices: dict[str, PriceQuote] = {}
        for symbol in symbols:
            entry = data.get(COINGECKO_IDS[symbol]) if isinstance(data, dict) else None
            if not entry:
                continue
            prices[symbol] = PriceQuote(
                price=entry.get("usd") or 0.0,
                change_24h=entry.get("usd_24h_change"),
                market_cap=entry.get("usd_market_cap"),
            )
        return prices

    async def generate_report(self, assets: Sequence[str], focus: str = "general") -> MarketReport:
        logger.info("Generating {} report for: {}", focus, ", ".join(assets))
        prices = await self.fetch_prices(assets)
        signals = detect_narratives(prices)

        self.report_count += 1
        report = MarketReport(
            title=f"Market Intelligence Brief #{self.report_count}",
            focus=focus,
            summary=summarize(prices, signals),
            assets=format_assets(prices),
            signals=signals,
            confidence=rate_confidence(prices, signals),
            action_items=action_items(signals),
        )
        logger.info("Report generated: {}", report.title)
        return report

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
