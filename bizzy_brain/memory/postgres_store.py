from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Sequence

try:
    import asyncpg
except Exception:  # pragma: no cover - optional dependency at runtime
    asyncpg = None  # type: ignore[assignment]

from .storage.utils import (
    decode_embedding,
    decode_json,
    decode_tags,
    encode_embedding,
    encode_json,
    encode_tags,
    utc_now_iso,
)


logger = logging.getLogger("bizzy_brain")

_COUNTER_FIELDS = {"query_count", "web_lookups"}


def _optional_float(value: object) -> float | None:
    return float(value) if value is not None else None  # type: ignore[arg-type]


class PostgresMemoryStore:
    """Postgres-backed store implementing the same API as MemoryStore."""

    SCHEMA_VERSION = 3
    backend_name = "postgres"

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("MEMORY_POSTGRES_DSN cannot be empty")
        self._pool: "asyncpg.Pool | None" = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> "asyncpg.Pool":
        if asyncpg is None:
            raise RuntimeError(
                "Postgres memory backend requires asyncpg. Install with: pip install asyncpg"
            )
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=6,
                command_timeout=30.0,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    version = await self._get_schema_version(conn)
                    if version > self.SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Postgres memory schema version {version} is newer than supported {self.SCHEMA_VERSION}. "
                            "Upgrade bizzy_brain before starting."
                        )
                    await self._create_schema(conn)
                    await self._migrate_schema(conn, version)
                    if version != self.SCHEMA_VERSION:
                        await self._set_schema_version(conn, self.SCHEMA_VERSION)
            self._initialized = True

    async def _get_schema_version(self, conn: "asyncpg.Connection") -> int:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        row = await conn.fetchrow("SELECT value FROM memory_meta WHERE key = 'schema_version'")
        if row is None:
            return 0
        try:
            return int(str(row["value"]))
        except ValueError:
            return 0

    async def _set_schema_version(self, conn: "asyncpg.Connection", version: int) -> None:
        await conn.execute(
            """
            INSERT INTO memory_meta (key, value, updated_at)
            VALUES ('schema_version', $1, NOW())
            ON CONFLICT(key) DO UPDATE SET
                value = EXCLUDED.value,
                updated_at = NOW()
            """,
            str(int(version)),
        )

    async def _migrate_schema(self, conn: "asyncpg.Connection", from_version: int) -> None:
        # v2: thread pin/archive flags and memory KPI snapshot (additive).
        await conn.execute(
            """
            ALTER TABLE conversation_threads ADD COLUMN IF NOT EXISTS pinned BOOLEAN NOT NULL DEFAULT FALSE;
            ALTER TABLE conversation_threads ADD COLUMN IF NOT EXISTS archived BOOLEAN NOT NULL DEFAULT FALSE;
            ALTER TABLE memory_records ADD COLUMN IF NOT EXISTS kpi_snapshot TEXT;
            CREATE INDEX IF NOT EXISTS idx_threads_user_active
            ON conversation_threads(user_id, archived, last_message_at DESC);
            """
        )
        # v3: memory vectors move from JSON text to pgvector
        column_type = await conn.fetchval(
            """
            SELECT udt_name FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = 'memory_records' AND column_name = 'embedding'
            """
        )
        if column_type == "text":
            await conn.execute(
                "ALTER TABLE memory_records ALTER COLUMN embedding TYPE vector USING embedding::vector"
            )

    async def _create_schema(self, conn: "asyncpg.Connection") -> None:
        await conn.execute(
            """
            CREATE EXTENSION IF NOT EXISTS vector;

            CREATE TABLE IF NOT EXISTS business_profiles (
                business_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                business_type TEXT NOT NULL DEFAULT '',
                industry TEXT NOT NULL DEFAULT '',
                location TEXT NOT NULL DEFAULT '',
                team_size INTEGER,
                has_viewed_integrations_page BOOLEAN NOT NULL DEFAULT FALSE,
                onboarding_completed_once BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_business_profiles_user ON business_profiles(user_id);

            CREATE TABLE IF NOT EXISTS accounting_connections (
                business_id TEXT PRIMARY KEY,
                provider TEXT NOT NULL DEFAULT 'quickbooks',
                connected_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE TABLE IF NOT EXISTS kpi_snapshots (
                kpi_id BIGSERIAL PRIMARY KEY,
                business_id TEXT NOT NULL,
                month TEXT NOT NULL,
                total_revenue DOUBLE PRECISION,
                total_expenses DOUBLE PRECISION,
                net_profit DOUBLE PRECISION,
                profit_margin DOUBLE PRECISION,
                top_spending_category TEXT,
                UNIQUE (business_id, month)
            );

            CREATE TABLE IF NOT EXISTS forecast_points (
                forecast_id BIGSERIAL PRIMARY KEY,
                business_id TEXT NOT NULL,
                month TEXT NOT NULL,
                cash_in DOUBLE PRECISION,
                cash_out DOUBLE PRECISION,
                net_cash DOUBLE PRECISION,
                UNIQUE (business_id, month)
            );

            CREATE TABLE IF NOT EXISTS suggested_moves (
                move_id BIGSERIAL PRIMARY KEY,
                business_id TEXT NOT NULL,
                title TEXT NOT NULL,
                rationale TEXT NOT NULL DEFAULT '',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE TABLE IF NOT EXISTS conversation_threads (
                thread_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                business_id TEXT,
                title TEXT NOT NULL DEFAULT '',
                first_intent TEXT NOT NULL DEFAULT 'general',
                module TEXT NOT NULL DEFAULT 'bizzy',
                pinned BOOLEAN NOT NULL DEFAULT FALSE,
                archived BOOLEAN NOT NULL DEFAULT FALSE,
                last_message_excerpt TEXT NOT NULL DEFAULT '',
                last_message_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversation_messages (
                message_id BIGSERIAL PRIMARY KEY,
                thread_id TEXT NOT NULL REFERENCES conversation_threads(thread_id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                business_id TEXT,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
                content TEXT NOT NULL,
                embedding TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversation_messages_thread
            ON conversation_messages(thread_id, message_id DESC);

            CREATE TABLE IF NOT EXISTS memory_records (
                memory_id BIGSERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                embedding vector NOT NULL,
                input_text TEXT NOT NULL DEFAULT '',
                response_text TEXT NOT NULL DEFAULT '',
                tags TEXT NOT NULL DEFAULT '[]',
                kpi_snapshot TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_memory_records_user ON memory_records(user_id, memory_id DESC);

            CREATE TABLE IF NOT EXISTS usage_counters (
                user_id TEXT NOT NULL,
                month TEXT NOT NULL,
                query_count INTEGER NOT NULL DEFAULT 0,
                web_lookups INTEGER NOT NULL DEFAULT 0,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, month)
            );
            """
        )

    # Business context

    async def get_business_profile(
        self,
        business_id: str | None = None,
        user_id: str | None = None,
    ) -> Optional[Dict[str, object]]:
        if business_id:
            where, param = "business_id = $1", business_id
        elif user_id:
            where, param = "user_id = $1", user_id
        else:
            return None
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT business_id, user_id, name, business_type, industry, location, team_size,
                       has_viewed_integrations_page, onboarding_completed_once
                FROM business_profiles
                WHERE {where}
                ORDER BY created_at
                LIMIT 1
                """,
                param,
            )
        if row is None:
            return None
        return {
            "business_id": str(row["business_id"]),
            "user_id": str(row["user_id"]),
            "name": str(row["name"]),
            "business_type": str(row["business_type"]),
            "industry": str(row["industry"]),
            "location": str(row["location"]),
            "team_size": int(row["team_size"]) if row["team_size"] is not None else None,
            "has_viewed_integrations_page": bool(row["has_viewed_integrations_page"]),
            "onboarding_completed_once": bool(row["onboarding_completed_once"]),
        }

    async def has_accounting_connection(self, business_id: str) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT 1 FROM accounting_connections WHERE business_id = $1 LIMIT 1",
                business_id,
            )
        return row is not None

    async def list_kpi_snapshots(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT month, total_revenue, total_expenses, net_profit, profit_margin, top_spending_category
                FROM kpi_snapshots
                WHERE business_id = $1
                ORDER BY month DESC
                LIMIT $2
                """,
                business_id,
                max(1, int(limit)),
            )
        return [
            {
                "month": str(row["month"]),
                "total_revenue": _optional_float(row["total_revenue"]),
                "total_expenses": _optional_float(row["total_expenses"]),
                "net_profit": _optional_float(row["net_profit"]),
                "profit_margin": _optional_float(row["profit_margin"]),
                "top_spending_category": row["top_spending_category"],
            }
            for row in rows
        ]

    async def list_forecast_points(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT month, cash_in, cash_out, net_cash
                FROM forecast_points
                WHERE business_id = $1
                ORDER BY month ASC
                LIMIT $2
                """,
                business_id,
                max(1, int(limit)),
            )
        return [
            {
                "month": str(row["month"]),
                "cash_in": _optional_float(row["cash_in"]),
                "cash_out": _optional_float(row["cash_out"]),
                "net_cash": _optional_float(row["net_cash"]),
            }
            for row in rows
        ]

    async def list_suggested_moves(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT move_id, title, rationale
                FROM suggested_moves
                WHERE business_id = $1
                ORDER BY move_id DESC
                LIMIT $2
                """,
                business_id,
                max(1, int(limit)),
            )
        return [
            {"move_id": int(row["move_id"]), "title": str(row["title"]), "rationale": str(row["rationale"])}
            for row in rows
        ]

    # Conversations

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
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO conversation_threads (
                    thread_id, user_id, business_id, title, first_intent, module, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $7)
                ON CONFLICT (thread_id) DO NOTHING
                """,
                thread_id,
                user_id,
                business_id,
                title,
                first_intent,
                module,
                now,
            )
        return thread_id

    async def get_thread(self, thread_id: str) -> Optional[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT thread_id, user_id, business_id, title, first_intent, module, pinned, archived,
                       last_message_excerpt, last_message_at, created_at, updated_at
                FROM conversation_threads
                WHERE thread_id = $1
                """,
                thread_id,
            )
        if row is None:
            return None
        item = dict(row)
        item["pinned"] = bool(item["pinned"])
        item["archived"] = bool(item["archived"])
        return item

    async def touch_thread(self, thread_id: str, excerpt: str, last_message_at: str) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE conversation_threads
                SET last_message_excerpt = $2, last_message_at = $3, updated_at = $4
                WHERE thread_id = $1
                """,
                thread_id,
                excerpt,
                last_message_at,
                utc_now_iso(),
            )

    async def set_thread_flags(
        self,
        thread_id: str,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
    ) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE conversation_threads
                SET pinned = COALESCE($2, pinned), archived = COALESCE($3, archived), updated_at = $4
                WHERE thread_id = $1
                """,
                thread_id,
                pinned,
                archived,
                utc_now_iso(),
            )

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
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                ids: list[int] = []
                for role, content, embedding in (
                    ("user", user_content, user_embedding),
                    ("assistant", assistant_content, assistant_embedding),
                ):
                    message_id = await conn.fetchval(
                        """
                        INSERT INTO conversation_messages (
                            thread_id, user_id, business_id, role, content, embedding, created_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        RETURNING message_id
                        """,
                        thread_id,
                        user_id,
                        business_id,
                        role,
                        content,
                        encode_embedding(embedding),
                        created_at,
                    )
                    ids.append(int(message_id))
        return ids[0], ids[1]

    async def list_recent_messages(self, thread_id: str, limit: int) -> List[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT message_id, thread_id, role, content, embedding, created_at
                FROM conversation_messages
                WHERE thread_id = $1
                ORDER BY message_id DESC
                LIMIT $2
                """,
                thread_id,
                max(1, int(limit)),
            )
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

    # Vector memory

    async def insert_memory_record(
        self,
        user_id: str,
        embedding: Sequence[float],
        input_text: str,
        response_text: str,
        tags: Iterable[str] | None = None,
        kpi_snapshot: Dict[str, object] | None = None,
    ) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            memory_id = await conn.fetchval(
                """
                INSERT INTO memory_records (
                    user_id, embedding, input_text, response_text, tags, kpi_snapshot, created_at
                )
                VALUES ($1, $2::text::vector, $3, $4, $5, $6, $7)
                RETURNING memory_id
                """,
                user_id,
                encode_embedding(embedding),
                input_text,
                response_text,
                encode_tags(tags),
                encode_json(kpi_snapshot),
                utc_now_iso(),
            )
        return int(memory_id)

    @staticmethod
    def _memory_row(row: "asyncpg.Record") -> Dict[str, object]:
        return {
            "memory_id": int(row["memory_id"]),
            "user_id": str(row["user_id"]),
            "input_text": str(row["input_text"]),
            "response_text": str(row["response_text"]),
            "tags": decode_tags(row["tags"]),
            "kpi_snapshot": decode_json(row["kpi_snapshot"]),
            "created_at": str(row["created_at"]),
        }

    async def match_memory_records(
        self,
        user_id: str,
        embedding: Sequence[float],
        threshold: float,
        match_count: int,
        tags: Iterable[str] | None = None,
    ) -> List[Dict[str, object]]:
        # <=> is cosine distance; NaN distances come from zero vectors
        wanted = [str(tag) for tag in (tags or ()) if str(tag).strip()] or None
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                WITH target AS (SELECT $2::text::vector AS embedding)
                SELECT m.memory_id, m.user_id, m.input_text, m.response_text, m.tags, m.kpi_snapshot, m.created_at,
                       1 - (m.embedding <=> target.embedding) AS similarity
                FROM memory_records m, target
                WHERE m.user_id = $1
                  AND vector_dims(m.embedding) = vector_dims(target.embedding)
                  AND (m.embedding <=> target.embedding) <> 'NaN'::float8
                  AND 1 - (m.embedding <=> target.embedding) >= $3
                  AND ($5::text[] IS NULL OR m.tags::jsonb ?| $5::text[])
                ORDER BY m.embedding <=> target.embedding, m.memory_id DESC
                LIMIT $4
                """,
                user_id,
                encode_embedding(embedding),
                float(threshold),
                max(1, int(match_count)),
                wanted,
            )
        return [
            {**self._memory_row(row), "similarity": max(-1.0, min(1.0, float(row["similarity"])))}
            for row in rows
        ]

    async def list_recent_memory_records(self, user_id: str, limit: int) -> List[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT memory_id, user_id, input_text, response_text, tags, kpi_snapshot, created_at
                FROM memory_records
                WHERE user_id = $1
                ORDER BY memory_id DESC
                LIMIT $2
                """,
                user_id,
                max(1, int(limit)),
            )
        return [self._memory_row(row) for row in rows]

    async def count_memory_records(self, user_id: str) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval("SELECT COUNT(*) FROM memory_records WHERE user_id = $1", user_id)
        return int(value or 0)

    # Usage counters

    async def get_usage_counter(self, user_id: str, month: str) -> Optional[Dict[str, object]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, month, query_count, web_lookups, updated_at
                FROM usage_counters
                WHERE user_id = $1 AND month = $2
                """,
                user_id,
                month,
            )
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
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(
                f"""
                INSERT INTO usage_counters (user_id, month, {field}, updated_at)
                VALUES ($1, $2, $3, NOW())
                ON CONFLICT(user_id, month) DO UPDATE SET
                    {field} = usage_counters.{field} + EXCLUDED.{field},
                    updated_at = NOW()
                RETURNING {field}
                """,
                user_id,
                month,
                max(0, int(amount)),
            )
        return int(value or 0)
