from __future__ import annotations

import uuid
from typing import Dict, Optional

import aiosqlite

from .utils import _sqlite_memory_connection, utc_now_iso


def _thread_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "thread_id": str(row["thread_id"]),
        "user_id": str(row["user_id"]),
        "business_id": str(row["business_id"]) if row["business_id"] is not None else None,
        "title": str(row["title"]),
        "first_intent": str(row["first_intent"]),
        "module": str(row["module"]),
        "pinned": bool(row["pinned"]),
        "archived": bool(row["archived"]),
        "last_message_excerpt": str(row["last_message_excerpt"]),
        "last_message_at": str(row["last_message_at"]) if row["last_message_at"] is not None else None,
        "created_at": str(row["created_at"]),
        "updated_at": str(row["updated_at"]),
    }


class MemoryThreadsMixin:
    async def create_thread(
        self,
        user_id: str,
        business_id: str | None,
        title: str,
        first_intent: str,
        module: str,
        *,
        thread_id: str | None = None,
    ) -> str:
        thread_id = thread_id or uuid.uuid4().hex
        now = utc_now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO conversation_threads (
                    thread_id, user_id, business_id, title, first_intent, module, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(thread_id) DO NOTHING
                """,
                (thread_id, user_id, business_id, title, first_intent, module, now, now),
            )
            await db.commit()
        return thread_id

    async def get_thread(self, thread_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT thread_id, user_id, business_id, title, first_intent, module, pinned, archived,
                       last_message_excerpt, last_message_at, created_at, updated_at
                FROM conversation_threads
                WHERE thread_id = ?
                """,
                (thread_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return _thread_row(row) if row is not None else None

    async def touch_thread(self, thread_id: str, excerpt: str, last_message_at: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                UPDATE conversation_threads
                SET last_message_excerpt = ?, last_message_at = ?, updated_at = ?
                WHERE thread_id = ?
                """,
                (excerpt, last_message_at, utc_now_iso(), thread_id),
            )
            await db.commit()

    async def set_thread_flags(
        self,
        thread_id: str,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
    ) -> None:
        assignments: list[str] = []
        params: list[object] = []
        if pinned is not None:
            assignments.append("pinned = ?")
            params.append(1 if pinned else 0)
        if archived is not None:
            assignments.append("archived = ?")
            params.append(1 if archived else 0)
        if not assignments:
            return
        assignments.append("updated_at = ?")
        params.append(utc_now_iso())
        params.append(thread_id)
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                f"UPDATE conversation_threads SET {', '.join(assignments)} WHERE thread_id = ?",
                tuple(params),
            )
            await db.commit()
