"""Intent resolver -- maps query text to a fixed operation plus asset symbols."""

from __future__ import annotations

import re

from hederaintel.agent.models.enums import QueryOperation
from hederaintel.agent.models.query import QueryIntent

# Evaluated top to bottom; first matching keyword set wins.
INTENT_KEYWORDS: tuple[tuple[tuple[str, ...], QueryOperation], ...] = (
    (("price", "how much", "worth"), QueryOperation.PRICE_CHECK),
    (("narrative", "trend", "signal"), QueryOperation.NARRATIVE_DETECTION),
    (("hedera", "hbar", "network", "health"), QueryOperation.NETWORK_HEALTH),
    (("capabilit", "what can you", "help", "who are you"), QueryOperation.CAPABILITIES),
)

ASSET_ALIASES: dict[str, str] = {
    "bitcoin": "BTC",
    "btc": "BTC",
    "ethereum": "ETH",
    "eth": "ETH",
    "solana": "SOL",
    "sol": "SOL",
    "hedera": "HBAR",
    "hbar": "HBAR",
    "avalanche": "AVAX",
    "avax": "AVAX",
    "near": "NEAR",
    "polkadot": "DOT",
    "dot": "DOT",
}

_ASSET_PATTERN = re.compile(r"\b(" + "|".join(sorted(ASSET_ALIASES, key=len, reverse=True)) + r")\b")

# Structured query-type names accepted in addition to QueryOperation values.
QUERY_TYPE_ALIASES: dict[str, QueryOperation] = {
    "market_report": QueryOperation.FULL_REPORT,
    "report": QueryOperation.FULL_REPORT,
    "hedera_network_stats": QueryOperation.NETWORK_HEALTH,
    "hedera_intelligence": QueryOperation.NETWORK_HEALTH,
}


def extract_assets(text: str) -> list[str]:
    """Canonical symbols mentioned in *text*, deduplicated, first occurrence first."""
    found: list[str] = []
    for match in _ASSET_PATTERN.finditer(text.lower()):
        symbol = ASSET_ALIASES[match.group(1)]
        if symbol not in found:
            found.append(symbol)
    return found


def resolve(text: str) -> QueryIntent:
    query = text.lower()
    operation = QueryOperation.FULL_REPORT
    for keywords, candidate in INTENT_KEYWORDS:
        if any(keyword in query for keyword in keywords):
            operation = candidate
            break
    return QueryIntent(operation=operation, assets=extract_assets(query))


def resolve_query_type(name: str) -> QueryOperation | None:
    """Map a structured query type to an operation, or ``None`` if unknown."""
    key = name.strip().lower()
    try:
        return QueryOperation(key)
    except ValueError:
        return QUERY_TYPE_ALIASES.get(key)
