"""Query intent and response helpers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hederaintel.agent.models.enums import QueryOperation, ResponseStatus


class QueryIntent(BaseModel):
    """Resolved operation plus extracted asset symbols.

    Derived per inbound message, never persisted.  An empty ``assets`` list
    means "use the default basket"; the caller decides what that is.
    """

    model_config = ConfigDict(frozen=True)

    operation: QueryOperation
    assets: list[str] = Field(default_factory=list)


def ok_response(operation: QueryOperation, **fields: Any) -> dict[str, Any]:
    return {"status": ResponseStatus.OK.value, "type": operation.value, **fields}


def error_response(message: str, operation: QueryOperation | str | None = None, **fields: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"status": ResponseStatus.ERROR.value, "message": message}
    if operation is not None:
        body["type"] = str(operation)
    body.update(fields)
    return body
