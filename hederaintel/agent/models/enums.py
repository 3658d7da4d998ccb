"""Shared enumerations used across the agent runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Wire protocol -----------------------------------------------------------


class Operation(StrEnum):
    """Envelope operations understood (or emitted) by this agent."""

    CONNECTION_REQUEST = "connection_request"
    CONNECTION_CREATED = "connection_created"
    MESSAGE = "message"
    CLOSE_CONNECTION = "close_connection"
    REGISTER = "register"
    RESPONSE = "response"
    HEARTBEAT = "heartbeat"
    CHAT_RESPONSE = "chat_response"


# -- Queries -----------------------------------------------------------------


class QueryOperation(StrEnum):
    """Closed set of operations a query can resolve to."""

    PRICE_CHECK = "price_check"
    NARRATIVE_DETECTION = "narrative_detection"
    NETWORK_HEALTH = "network_health"
    CAPABILITIES = "capabilities"
    FULL_REPORT = "full_report"


class ResponseStatus(StrEnum):
    OK = "ok"
    ERROR = "error"


# -- Reports -----------------------------------------------------------------


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
