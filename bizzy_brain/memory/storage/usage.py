from __future__ import annotations

from typing import Dict, Optional

import aiosqlite

from .utils import _sqlite_memory_connection

_COUNTER_FIELDS = {"query_count", "web_lookups"}


class MemoryUsageMixin:
    async def get_usage_counter(self, user_id: str, month: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, month, query_count, web_lookups, updated_at
                FROM usage_counters
                WHERE user_id = ? AND month = ?
                """,
                (user_id, month),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "user_id": str(row["user_id"]),
            "month": str(row["month"]),
            "query_count": int(row["query_count"]),
            "web_lookups": int(row["web_lookups"]),
            "updated_at": str(row["updated_at"]),
        }

    async def increment_usage_counter(self, user_id: str, month: str, field: str, amount: int = 1) -> int:
        if field not in _COUNTER_FIELDS:
            raise ValueError(f"Unknown usage counter field: {field}")
        step = max(0, int(amount))
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                f"""
                INSERT INTO usage_counters (user_id, month, {field}, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(user_id, month) DO UPDATE SET
                    {field} = {field} + excluded.{field},
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, month, step),
            )
            async with db.execute(
                f"SELECT {field} FROM usage_counters WHERE user_id = ? AND month = ?",
                (user_id, month),
            ) as cursor:
                row = await cursor.fetchone()
            await db.commit()
        return int(row[0]) if row else step
