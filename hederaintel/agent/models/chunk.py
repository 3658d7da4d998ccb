"""Chunk model for payloads split across several transport messages."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

CHUNK_KEY = "_chunk"


class Chunk(BaseModel):
    """One fragment of a logical message.

    Wire form::

        {"_chunk": {"index": 0, "total": 3, "id": "<message_id>"}, "data": "<fragment>"}
    """

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(min_length=1)
    index: int = Field(ge=0)
    total: int = Field(ge=1)
    data: str

    @model_validator(mode="after")
    def _index_in_range(self) -> Chunk:
        if self.index >= self.total:
            msg = f"Chunk index {self.index} out of range for total {self.total}"
            raise ValueError(msg)
        return self

    def to_wire(self) -> bytes:
        frame = {
            CHUNK_KEY: {"index": self.index, "total": self.total, "id": self.message_id},
            "data": self.data,
        }
        return json.dumps(frame, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> Chunk:
        """Build a chunk from a decoded wire frame.

        Raises ``ValueError`` (or pydantic's ``ValidationError``, a subclass)
        when the frame is missing fields or carries invalid values.
        """
        header = frame.get(CHUNK_KEY)
        if not isinstance(header, dict):
            msg = "Chunk header is not an object"
            raise ValueError(msg)  # noqa: TRY004
        return cls(
            message_id=header.get("id"),
            index=header.get("index"),
            total=header.get("total"),
            data=frame.get("data"),
        )


def is_chunk_frame(obj: Any) -> bool:
    return isinstance(obj, dict) and CHUNK_KEY in obj
