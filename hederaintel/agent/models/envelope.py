"""HCS-10 envelope model.

Wire field names are the compact ones (``p``, ``op``, ``data``, ``m``,
``t``); Python code uses the descriptive attribute names.  Parsing also
accepts the long ``protocol`` / ``operation`` aliases some peers send.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from hederaintel.agent.models.enums import Operation

PROTOCOL_TAG = "hcs-10"


class ProtocolEnvelope(BaseModel):
    """Structured message wrapper of this agent's wire protocol."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    protocol: str = Field(
        default=PROTOCOL_TAG,
        validation_alias=AliasChoices("p", "protocol"),
        serialization_alias="p",
    )
    operation: str = Field(
        validation_alias=AliasChoices("op", "operation"),
        serialization_alias="op",
    )
    """Kept as a plain string so unknown operations survive parsing."""

    operator_id: str = ""
    payload: str = Field(
        default="",
        validation_alias=AliasChoices("data", "payload"),
        serialization_alias="data",
    )
    human_summary: str = Field(
        default="",
        validation_alias=AliasChoices("m", "human_summary"),
        serialization_alias="m",
    )
    timestamp: str | None = Field(
        default=None,
        validation_alias=AliasChoices("t", "timestamp"),
        serialization_alias="t",
    )

    @field_validator("payload", "human_summary", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        # Some peers embed structured data directly instead of a JSON string.
        if value is None:
            return ""
        if isinstance(value, dict | list):
            return json.dumps(value, separators=(",", ":"))
        return value

    # -- Construction ----------------------------------------------------------

    @classmethod
    def create(
        cls,
        operation: Operation | str,
        operator_id: str,
        data: dict[str, Any] | str,
        summary: str,
        *,
        stamped: bool = True,
    ) -> ProtocolEnvelope:
        """Build an outbound envelope; dict payloads are JSON-encoded."""
        payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"), default=str)
        return cls(
            operation=str(operation),
            operator_id=operator_id,
            payload=payload,
            human_summary=summary,
            timestamp=datetime.now(UTC).isoformat() if stamped else None,
        )

    # -- Wire ------------------------------------------------------------------

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @property
    def is_known_operation(self) -> bool:
        return self.operation in {op.value for op in Operation}


def operator_id_for(inbound_channel_id: str, account_id: str) -> str:
    """Self-identifying operator id: ``<inbound-channel-id>@<account-id>``."""
    return f"{inbound_channel_id}@{account_id}"
