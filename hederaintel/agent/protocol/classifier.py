"""Message classifier -- decides the shape of a raw inbound payload.

Every byte sequence maps to exactly one of three variants:

- ``Structured``: a valid HCS-10 envelope carrying our protocol tag
- ``DirectQuery``: a legacy JSON query object (``type == "query"`` or a
  ``query`` key)
- ``NaturalLanguage``: anything else, kept as the original text
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from hederaintel.agent.models.envelope import PROTOCOL_TAG, ProtocolEnvelope

LEGACY_PROTOCOL_TAG = "hedera-intel"


@dataclass(frozen=True)
class Structured:
    envelope: ProtocolEnvelope


@dataclass(frozen=True)
class DirectQuery:
    body: dict[str, Any]


@dataclass(frozen=True)
class NaturalLanguage:
    text: str


Classified = Structured | DirectQuery | NaturalLanguage


def _has_protocol_tag(obj: dict[str, Any]) -> bool:
    # Same precedence as the envelope model: ``p`` shadows ``protocol``.
    return obj.get("p", obj.get("protocol")) == PROTOCOL_TAG


def _is_direct_query(obj: dict[str, Any]) -> bool:
    if obj.get("type") == "query" or "query" in obj:
        return True
    return obj.get("protocol") == LEGACY_PROTOCOL_TAG and "queryType" in obj


def classify(raw: bytes) -> Classified:
    """Classify *raw*.  Never raises."""
    text = raw.decode("utf-8", errors="replace")
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        return NaturalLanguage(text)

    if not isinstance(obj, dict):
        return NaturalLanguage(text)

    if _has_protocol_tag(obj):
        try:
            return Structured(ProtocolEnvelope.model_validate(obj))
        except ValidationError:
            return NaturalLanguage(text)

    if _is_direct_query(obj):
        return DirectQuery(obj)

    return NaturalLanguage(text)
