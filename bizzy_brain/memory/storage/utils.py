from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, Sequence

import aiosqlite
import numpy as np


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("MEMORY_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_memory_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA foreign_keys=ON")
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def encode_embedding(embedding: Sequence[float] | None) -> str | None:
    if embedding is None:
        return None
    return json.dumps([float(value) for value in embedding], separators=(",", ":"))


def decode_embedding(raw: object) -> list[float] | None:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        return [float(value) for value in raw]
    try:
        parsed = json.loads(str(raw))
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, list):
        return None
    try:
        return [float(value) for value in parsed]
    except (TypeError, ValueError):
        return None


def encode_tags(tags: Iterable[str] | None) -> str:
    seen: list[str] = []
    for tag in tags or ():
        clean = str(tag or "").strip()
        if clean and clean not in seen:
            seen.append(clean)
    return json.dumps(seen)


def decode_tags(raw: object) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(str(raw))
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    return [str(tag) for tag in parsed if str(tag).strip()]


def encode_json(value: object) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def decode_json(raw: object) -> object:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(str(raw))
    except (TypeError, ValueError):
        return None


def pack_vector(embedding: Sequence[float]) -> bytes:
    """float32 little-endian blob, the on-disk form of memory record vectors."""
    return np.asarray(embedding, dtype="<f4").tobytes()


def unpack_vector(raw: object) -> np.ndarray | None:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray, memoryview)):
        vector = np.frombuffer(raw, dtype="<f4")
    else:
        # rows written before vectors moved to blobs hold JSON text
        values = decode_embedding(raw)
        if not values:
            return None
        vector = np.asarray(values, dtype="<f4")
    return vector if vector.size else None


def tags_overlap(record_tags: Iterable[str], wanted: Iterable[str] | None) -> bool:
    wanted_set = {str(tag) for tag in (wanted or ()) if str(tag).strip()}
    if not wanted_set:
        return True
    return bool(wanted_set.intersection(str(tag) for tag in record_tags))


def top_similar(
    candidates: Sequence[tuple[int, np.ndarray]],
    query_embedding: Sequence[float],
    *,
    threshold: float,
    match_count: int,
) -> list[tuple[int, float]]:
    """Cosine-scores every candidate in one matrix product.

    Returns ``(memory_id, similarity)`` pairs at or above ``threshold``, best
    first, newest first on ties. Candidates whose dimension differs from the
    query are ignored. CPU bound; callers run it off the event loop.
    """
    query = np.asarray(query_embedding, dtype=np.float32)
    query_norm = float(np.linalg.norm(query))
    usable = [(memory_id, vector) for memory_id, vector in candidates if vector.shape == query.shape]
    if query_norm == 0.0 or not usable:
        return []

    ids = np.fromiter((memory_id for memory_id, _ in usable), dtype=np.int64, count=len(usable))
    matrix = np.vstack([vector for _, vector in usable]).astype(np.float32, copy=False)
    norms = np.linalg.norm(matrix, axis=1) * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0.0, (matrix @ query) / norms, 0.0)
    scores = np.clip(scores, -1.0, 1.0)

    keep = np.flatnonzero(scores >= threshold)
    if keep.size == 0:
        return []
    # lexsort sorts by the last key first
    order = keep[np.lexsort((-ids[keep], -scores[keep]))]
    return [(int(ids[index]), float(scores[index])) for index in order[: max(1, int(match_count))]]
