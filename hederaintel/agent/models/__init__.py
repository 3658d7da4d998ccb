"""Data models for the agent runtime."""

from hederaintel.agent.models.chunk import Chunk
from hederaintel.agent.models.connection import PeerConnection
from hederaintel.agent.models.enums import (
    Confidence,
    Operation,
    QueryOperation,
    ResponseStatus,
)
from hederaintel.agent.models.envelope import PROTOCOL_TAG, ProtocolEnvelope, operator_id_for
from hederaintel.agent.models.query import QueryIntent
from hederaintel.agent.models.report import (
    AssetQuote,
    MarketReport,
    NarrativeSignal,
    NetworkHealthReport,
    PriceQuote,
)

__all__ = [
    "PROTOCOL_TAG",
    # Reports
    "AssetQuote",
    # Wire
    "Chunk",
    # Enums
    "Confidence",
    "MarketReport",
    "NarrativeSignal",
    "NetworkHealthReport",
    "Operation",
    # Registry
    "PeerConnection",
    "PriceQuote",
    "ProtocolEnvelope",
    # Queries
    "QueryIntent",
    "QueryOperation",
    "ResponseStatus",
    "operator_id_for",
]
