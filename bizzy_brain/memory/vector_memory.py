from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Protocol, Sequence

from ..common import keyword_terms

logger = logging.getLogger("bizzy_brain")

TRIVIAL_TEXT_CHARS = 12
MAX_EMBED_CHARS = 8000
SYNOPSIS_CLIP_CHARS = 140


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class VectorMemoryStore(Protocol):
    async def insert_memory_record(
        self,
        user_id: str,
        embedding: Sequence[float],
        input_text: str,
        response_text: str,
        tags: Iterable[str] | None = None,
        kpi_snapshot: Dict[str, object] | None = None,
    ) -> int: ...

    async def match_memory_records(
        self,
        user_id: str,
        embedding: Sequence[float],
        threshold: float,
        match_count: int,
        tags: Iterable[str] | None = None,
    ) -> List[Dict[str, object]]: ...

    async def list_recent_memory_records(self, user_id: str, limit: int) -> List[Dict[str, object]]: ...


def is_trivial(text: str | None) -> bool:
    return len((text or "").strip()) < TRIVIAL_TEXT_CHARS


def _clip_quote(text: str) -> str:
    clean = (text or "").strip()
    if len(clean) > SYNOPSIS_CLIP_CHARS:
        return clean[:SYNOPSIS_CLIP_CHARS] + "…"
    return clean


def summarize_exchange(input_text: str, response_text: str) -> str:
    return (
        f"From a previous discussion: “{_clip_quote(input_text)}” "
        f"→ Bizzy replied: “{_clip_quote(response_text)}”"
    )


class WriteOutcome(str, enum.Enum):
    STORED = "stored"
    SKIPPED_TRIVIAL = "skipped_trivial"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass(slots=True)
class MemoryWriteResult:
    outcome: WriteOutcome
    memory_id: int | None = None
    error: str = ""


@dataclass(slots=True)
class MemoryHit:
    memory_id: int | None
    summary: str
    similarity: float
    tags: list[str] = field(default_factory=list)
    source: str = "vector"


class VectorMemory:
    """Long-term per-user memory of past exchanges.

    Writes are skipped for trivial or near-duplicate exchanges. Reads use vector
    similarity and only fall back to keyword overlap when the vector path raises.
    """

    def __init__(
        self,
        store: VectorMemoryStore,
        embedder: Embedder | None,
        *,
        dedup_threshold: float = 0.96,
        match_threshold: float = 0.75,
        match_count: int = 3,
        keyword_scan_limit: int = 50,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.dedup_threshold = float(dedup_threshold)
        self.match_threshold = float(match_threshold)
        self.match_count = max(1, int(match_count))
        self.keyword_scan_limit = max(1, int(keyword_scan_limit))
        self._warned_dedup_unavailable = False

    async def _embed(self, text: str) -> List[float]:
        if self.embedder is None:
            raise RuntimeError("embedding provider is not configured")
        return await self.embedder.embed(text[:MAX_EMBED_CHARS])

    async def store_memory(
        self,
        user_id: str,
        input_text: str,
        response_text: str,
        *,
        tags: Iterable[str] | None = None,
        kpi_snapshot: Dict[str, object] | None = None,
    ) -> MemoryWriteResult:
        if not user_id or (is_trivial(input_text) and is_trivial(response_text)):
            return MemoryWriteResult(outcome=WriteOutcome.SKIPPED_TRIVIAL)

        representative = (input_text or "").strip() or (response_text or "").strip()
        try:
            embedding = await self._embed(representative)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[memory] embedding failed; memory not stored: %s", exc)
            return MemoryWriteResult(outcome=WriteOutcome.FAILED, error=str(exc))

        try:
            duplicates = await self.store.match_memory_records(
                user_id,
                embedding,
                self.dedup_threshold,
                1,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            duplicates = []
            if not self._warned_dedup_unavailable:
                self._warned_dedup_unavailable = True
                logger.warning("[memory] similarity search unavailable; inserting without dedupe: %s", exc)

        if duplicates:
            return MemoryWriteResult(
                outcome=WriteOutcome.SKIPPED_DUPLICATE,
                memory_id=_as_memory_id(duplicates[0].get("memory_id")),
            )

        try:
            memory_id = await self.store.insert_memory_record(
                user_id,
                embedding,
                input_text or "",
                response_text or "",
                tags=list(tags or ()),
                kpi_snapshot=kpi_snapshot,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[memory] insert failed for user=%s", user_id)
            return MemoryWriteResult(outcome=WriteOutcome.FAILED, error=str(exc))
        return MemoryWriteResult(outcome=WriteOutcome.STORED, memory_id=memory_id)

    async def retrieve_memories(
        self,
        user_id: str,
        query: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> List[MemoryHit]:
        if not user_id or is_trivial(query):
            return []
        top_k = max(1, int(limit if limit is not None else self.match_count))
        floor = float(threshold if threshold is not None else self.match_threshold)
        wanted_tags = [str(tag) for tag in (tags or ()) if str(tag).strip()]

        try:
            embedding = await self._embed(query)
            rows = await self.store.match_memory_records(user_id, embedding, floor, top_k, tags=wanted_tags or None)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[memory] vector search unavailable; falling back to keyword scan: %s", exc)
            return await self._keyword_fallback(user_id, query, top_k)

        hits = [
            MemoryHit(
                memory_id=_as_memory_id(row.get("memory_id")),
                summary=summarize_exchange(str(row.get("input_text") or ""), str(row.get("response_text") or "")),
                similarity=float(row.get("similarity") or 0.0),
                tags=[str(tag) for tag in (row.get("tags") or [])],  # type: ignore[union-attr]
            )
            for row in rows
        ]
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:top_k]

    async def _keyword_fallback(self, user_id: str, query: str, limit: int) -> List[MemoryHit]:
        try:
            rows = await self.store.list_recent_memory_records(user_id, self.keyword_scan_limit)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[memory] keyword fallback scan failed for user=%s", user_id)
            return []

        terms = keyword_terms(query)
        scored: list[tuple[int, Dict[str, Any]]] = []
        for row in rows:
            haystack = f"{row.get('input_text') or ''} {row.get('response_text') or ''}".lower()
            score = sum(1 for term in terms if term in haystack)
            if score > 0:
                scored.append((score, row))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            MemoryHit(
                memory_id=_as_memory_id(row.get("memory_id")),
                summary=summarize_exchange(str(row.get("input_text") or ""), str(row.get("response_text") or "")),
                similarity=score / 10,
                tags=[str(tag) for tag in (row.get("tags") or [])],
                source="keyword",
            )
            for score, row in scored[:limit]
        ]


def _as_memory_id(value: object) -> int | None:
    if value is None:
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
