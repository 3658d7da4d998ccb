"""Chunk codec -- splits oversized payloads and reassembles them.

``encode`` is pure: it cuts a UTF-8 payload into fragments whose serialized
frames each fit the transport ceiling.  ``ChunkCodec`` holds the reassembly
buffer for the receiving side, keyed by message id and bounded by a TTL, a
pending-message ceiling and a per-message fragment ceiling.

Fragments are cut on character boundaries and sized by their JSON-escaped
length, so a frame never exceeds ``limit`` bytes once serialized.
"""

from __future__ import annotations

import json
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from hederaintel.agent.models.chunk import Chunk, is_chunk_frame

if TYPE_CHECKING:
    from collections.abc import Callable

# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _escaped_size(ch: str) -> int:
    """Bytes ``ch`` occupies inside a JSON string (ensure_ascii=False)."""
    if " " <= ch <= "~" and ch not in '"\\':
        return 1
    return len(json.dumps(ch, ensure_ascii=False).encode("utf-8", errors="surrogatepass")) - 2


def encode(payload: bytes, limit: int) -> list[Chunk]:
    """Split *payload* into ordered chunks whose frames fit in *limit* bytes.

    A payload that fits in one frame yields a single chunk with ``total == 1``.

    Raises
    ------
    ValueError:
        *payload* is not valid UTF-8, or *limit* cannot hold the framing
        overhead plus a single character.
    """
    text = payload.decode("utf-8")
    message_id = uuid.uuid4().hex

    # Reserve room for the widest index/total the split could produce.
    max_parts = max(len(text), 1)
    overhead = len(Chunk(message_id=message_id, index=max_parts - 1, total=max_parts, data="").to_wire())
    budget = limit - overhead
    if budget < 1:
        msg = f"Limit of {limit} bytes cannot hold the {overhead}-byte chunk framing"
        raise ValueError(msg)

    fragments: list[str] = []
    current: list[str] = []
    size = 0
    for ch in text:
        n = _escaped_size(ch)
        if n > budget:
            msg = f"Limit of {limit} bytes cannot hold a {n}-byte character plus framing"
            raise ValueError(msg)
        if size + n > budget:
            fragments.append("".join(current))
            current, size = [], 0
        current.append(ch)
        size += n
    fragments.append("".join(current))

    total = len(fragments)
    return [Chunk(message_id=message_id, index=i, total=total, data=frag) for i, frag in enumerate(fragments)]


def encode_frames(payload: bytes, limit: int) -> list[bytes]:
    """Wire frames for *payload*, in publish order."""
    return [chunk.to_wire() for chunk in encode(payload, limit)]


# ---------------------------------------------------------------------------
# Reassembly
# ---------------------------------------------------------------------------


@dataclass
class _Reassembly:
    total: int
    started: float
    parts: dict[int, str] = field(default_factory=dict)


class ChunkCodec:
    """Reassembly buffer for inbound chunk frames.

    Malformed or inconsistent fragments are logged and dropped; nothing
    raises past this class.
    """

    def __init__(
        self,
        *,
        ttl: float | None = 300.0,
        max_pending: int = 256,
        max_fragments: int = 64,
        completed_memory: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_pending = max_pending
        self._max_fragments = max_fragments
        self._completed_memory = completed_memory
        self._clock = clock
        self._pending: OrderedDict[str, _Reassembly] = OrderedDict()
        self._completed: OrderedDict[str, None] = OrderedDict()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- Public API ------------------------------------------------------------

    def unwrap(self, raw: bytes) -> bytes | None:
        """Route one raw transport message through the buffer.

        Returns *raw* unchanged when it is not a chunk frame, ``None`` while
        a chunked message is incomplete (or the frame was dropped), and the
        reassembled payload once the final fragment arrives.
        """
        try:
            obj = json.loads(raw)
        except (ValueError, RecursionError):
            return raw
        if not is_chunk_frame(obj):
            return raw

        try:
            chunk = Chunk.from_frame(obj)
        except ValueError as exc:
            logger.warning("Dropping malformed chunk frame: {}", exc)
            return None
        return self.ingest(chunk)

    def ingest(self, chunk: Chunk) -> bytes | None:
        """Buffer *chunk*; return the full payload when it completes a message."""
        self._expire()

        if chunk.message_id in self._completed:
            logger.debug("Ignoring fragment {} of completed message {}", chunk.index, chunk.message_id)
            return None
        if chunk.total > self._max_fragments:
            logger.warning(
                "Dropping fragment of message {}: total {} exceeds ceiling {}",
                chunk.message_id,
                chunk.total,
                self._max_fragments,
            )
            return None

        entry = self._pending.get(chunk.message_id)
        if entry is None:
            if len(self._pending) >= self._max_pending:
                evicted, _ = self._pending.popitem(last=False)
                logger.warning("Reassembly buffer full, evicting incomplete message {}", evicted)
            entry = _Reassembly(total=chunk.total, started=self._clock())
            self._pending[chunk.message_id] = entry
        elif entry.total != chunk.total:
            logger.warning(
                "Dropping fragment of message {}: total {} disagrees with {}",
                chunk.message_id,
                chunk.total,
                entry.total,
            )
            return None

        if chunk.index in entry.parts:
            logger.debug("Ignoring duplicate fragment {} of message {}", chunk.index, chunk.message_id)
            return None
        entry.parts[chunk.index] = chunk.data

        if len(entry.parts) < entry.total:
            return None

        del self._pending[chunk.message_id]
        self._mark_completed(chunk.message_id)
        text = "".join(entry.parts[i] for i in range(entry.total))
        logger.debug("Reassembled message {} from {} fragments", chunk.message_id, entry.total)
        return text.encode("utf-8", errors="surrogatepass")

    # -- Internals -------------------------------------------------------------

    def _expire(self) -> None:
        if self._ttl is None:
            return
        now = self._clock()
        while self._pending:
            message_id, entry = next(iter(self._pending.items()))
            if now - entry.started <= self._ttl:
                break
            del self._pending[message_id]
            logger.warning(
                "Expired incomplete message {} ({}/{} fragments)",
                message_id,
                len(entry.parts),
                entry.total,
            )

    def _mark_completed(self, message_id: str) -> None:
        self._completed[message_id] = None
        while len(self._completed) > self._completed_memory:
            self._completed.popitem(last=False)
