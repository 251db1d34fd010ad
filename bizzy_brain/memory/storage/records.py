from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Sequence

import aiosqlite

from .utils import (
    _sqlite_memory_connection,
    decode_json,
    decode_tags,
    encode_json,
    encode_tags,
    pack_vector,
    tags_overlap,
    top_similar,
    unpack_vector,
    utc_now_iso,
)

_RECORD_COLUMNS = "memory_id, user_id, input_text, response_text, tags, kpi_snapshot, created_at"


def _record_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "memory_id": int(row["memory_id"]),
        "user_id": str(row["user_id"]),
        "input_text": str(row["input_text"]),
        "response_text": str(row["response_text"]),
        "tags": decode_tags(row["tags"]),
        "kpi_snapshot": decode_json(row["kpi_snapshot"]),
        "created_at": str(row["created_at"]),
    }


def _rank_rows(
    rows: Sequence[tuple[object, object, object]],
    query: List[float],
    threshold: float,
    match_count: int,
    wanted: List[str],
) -> list[tuple[int, float]]:
    candidates = []
    for memory_id, raw_vector, raw_tags in rows:
        if wanted and not tags_overlap(decode_tags(raw_tags), wanted):
            continue
        vector = unpack_vector(raw_vector)
        if vector is not None:
            candidates.append((int(memory_id), vector))  # type: ignore[arg-type]
    return top_similar(candidates, query, threshold=threshold, match_count=match_count)


class MemoryRecordsMixin:
    async def insert_memory_record(
        self,
        user_id: str,
        embedding: Sequence[float],
        input_text: str,
        response_text: str,
        tags: Iterable[str] | None = None,
        kpi_snapshot: Dict[str, object] | None = None,
    ) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO memory_records (
                    user_id, embedding, input_text, response_text, tags, kpi_snapshot, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    pack_vector(embedding),
                    input_text,
                    response_text,
                    encode_tags(tags),
                    encode_json(kpi_snapshot),
                    utc_now_iso(),
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def match_memory_records(
        self,
        user_id: str,
        embedding: Sequence[float],
        threshold: float,
        match_count: int,
        tags: Iterable[str] | None = None,
    ) -> List[Dict[str, object]]:
        """Top ``match_count`` records by cosine similarity, each carrying a ``similarity`` key."""
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT memory_id, embedding, tags FROM memory_records WHERE user_id = ?",
                (user_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        if not rows:
            return []

        wanted = [str(tag) for tag in (tags or ()) if str(tag).strip()]
        ranked = await asyncio.to_thread(
            _rank_rows, rows, list(embedding), float(threshold), int(match_count), wanted
        )
        if not ranked:
            return []

        placeholders = ", ".join("?" for _ in ranked)
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_RECORD_COLUMNS} FROM memory_records WHERE memory_id IN ({placeholders})",
                tuple(memory_id for memory_id, _ in ranked),
            ) as cursor:
                by_id = {int(row["memory_id"]): _record_row(row) for row in await cursor.fetchall()}

        matches: List[Dict[str, object]] = []
        for memory_id, similarity in ranked:
            record = by_id.get(memory_id)
            if record is not None:
                matches.append({**record, "similarity": similarity})
        return matches

    async def list_recent_memory_records(self, user_id: str, limit: int) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_RECORD_COLUMNS}
                FROM memory_records
                WHERE user_id = ?
                ORDER BY memory_id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_record_row(row) for row in rows]

    async def count_memory_records(self, user_id: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM memory_records WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
