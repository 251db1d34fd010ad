from __future__ import annotations

from typing import Dict, List, Sequence

import aiosqlite

from .utils import _sqlite_memory_connection, decode_embedding, encode_embedding


class MemoryMessagesMixin:
    async def insert_message_pair(
        self,
        thread_id: str,
        user_id: str,
        business_id: str | None,
        user_content: str,
        assistant_content: str,
        created_at: str,
        user_embedding: Sequence[float] | None = None,
        assistant_embedding: Sequence[float] | None = None,
    ) -> tuple[int, int]:
        async with _sqlite_memory_connection(self.db_path) as db:
            ids: list[int] = []
            for role, content, embedding in (
                ("user", user_content, user_embedding),
                ("assistant", assistant_content, assistant_embedding),
            ):
                cursor = await db.execute(
                    """
                    INSERT INTO conversation_messages (
                        thread_id, user_id, business_id, role, content, embedding, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (thread_id, user_id, business_id, role, content, encode_embedding(embedding), created_at),
                )
                ids.append(int(cursor.lastrowid))
            await db.commit()
        return ids[0], ids[1]

    async def list_recent_messages(self, thread_id: str, limit: int) -> List[Dict[str, object]]:
        """Newest first."""
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT message_id, thread_id, role, content, embedding, created_at
                FROM conversation_messages
                WHERE thread_id = ?
                ORDER BY message_id DESC
                LIMIT ?
                """,
                (thread_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            {
                "message_id": int(row["message_id"]),
                "thread_id": str(row["thread_id"]),
                "role": str(row["role"]),
                "content": str(row["content"]),
                "embedding": decode_embedding(row["embedding"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]
