"""Report models returned by the intelligence collaborators."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from hederaintel.agent.models.enums import Confidence

# -- Market report -----------------------------------------------------------


class PriceQuote(BaseModel):
    """Raw price figures for one asset, as fetched."""

    price: float = 0.0
    change_24h: float | None = None
    market_cap: float | None = None


class AssetQuote(BaseModel):
    """Display-formatted figures for one asset."""

    symbol: str
    price: str
    change_24h: str
    market_cap: str


class NarrativeSignal(BaseModel):
    narrative: str
    score: float = Field(ge=0.0, le=1.0)
    evidence: str
    action: str | None = None


class MarketReport(BaseModel):
    title: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    focus: str = "general"
    summary: str
    assets: list[AssetQuote] = Field(default_factory=list)
    signals: list[NarrativeSignal] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW
    action_items: list[str] = Field(default_factory=list)


# -- Network health ----------------------------------------------------------


class SupplyStats(BaseModel):
    total_supply: str = "N/A"
    released_supply: str = "N/A"


class TopicActivity(BaseModel):
    message_count: int = 0
    unique_topics: int = 0
    avg_interval_seconds: float | None = None


class TransferStats(BaseModel):
    count: int = 0
    total_hbar: int = 0
    avg_hbar_per_tx: int = 0


class NodeStats(BaseModel):
    total_nodes: int = 0
    consensus_nodes: int = 0


class NetworkHealthReport(BaseModel):
    network: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    supply: SupplyStats | None = None
    topic_activity: TopicActivity | None = None
    transactions: TransferStats | None = None
    nodes: NodeStats | None = None
    health_score: int = 0
