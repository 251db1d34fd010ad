from __future__ import annotations

import os
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection

_OWNED_TABLES = (
    "conversation_messages",
    "conversation_threads",
    "memory_records",
    "usage_counters",
    "suggested_moves",
    "forecast_points",
    "kpi_snapshots",
    "accounting_connections",
    "business_profiles",
)

# (table, column definition) pairs added after the first release
_V2_COLUMNS = (
    ("conversation_threads", "pinned INTEGER NOT NULL DEFAULT 0"),
    ("conversation_threads", "archived INTEGER NOT NULL DEFAULT 0"),
    ("memory_records", "kpi_snapshot TEXT"),
)


def _reset_allowed() -> bool:
    flag = os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "").strip().lower()
    return flag in {"1", "true", "yes", "y", "on"}


class MemorySchemaMixin:
    SCHEMA_VERSION = 2

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def init(self) -> None:
        """Creates or upgrades the schema; a database from a newer build is only wiped on explicit opt-in."""
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            stored = await self._stored_version(db)
            populated = await self._owns_any_table(db)

            if not populated:
                await self._create_schema(db)
                await self._upgrade_to_v2(db)
            elif stored != self.SCHEMA_VERSION and _reset_allowed():
                await self._drop_and_recreate(db)
            elif stored > self.SCHEMA_VERSION:
                raise RuntimeError(
                    f"SQLite schema version mismatch: {self.db_path} is at user_version={stored}, "
                    f"this build supports {self.SCHEMA_VERSION}. "
                    "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to drop and recreate it."
                )
            else:
                await self._create_schema(db)
                # upgrade steps are idempotent and rerun to repair half-applied upgrades
                await self._upgrade_to_v2(db)

            if stored != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    @staticmethod
    async def _stored_version(db: aiosqlite.Connection) -> int:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    async def _owns_any_table(db: aiosqlite.Connection) -> bool:
        placeholders = ", ".join("?" for _ in _OWNED_TABLES)
        async with db.execute(
            f"SELECT 1 FROM sqlite_master WHERE type = 'table' AND name IN ({placeholders}) LIMIT 1",
            _OWNED_TABLES,
        ) as cursor:
            return await cursor.fetchone() is not None

    async def _drop_and_recreate(self, db: aiosqlite.Connection) -> None:
        for table in _OWNED_TABLES:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)
        await self._upgrade_to_v2(db)

    async def _upgrade_to_v2(self, db: aiosqlite.Connection) -> None:
        present: dict[str, set[str]] = {}
        for table, column_sql in _V2_COLUMNS:
            if table not in present:
                async with db.execute(f"PRAGMA table_info({table})") as cursor:
                    present[table] = {str(row[1]) for row in await cursor.fetchall()}
            column = column_sql.split()[0]
            if column not in present[table]:
                await db.execute(f"ALTER TABLE {table} ADD COLUMN {column_sql}")
                present[table].add(column)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_threads_user_active "
            "ON conversation_threads(user_id, archived, last_message_at DESC)"
        )

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS business_profiles (
                business_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                business_type TEXT NOT NULL DEFAULT '',
                industry TEXT NOT NULL DEFAULT '',
                location TEXT NOT NULL DEFAULT '',
                team_size INTEGER,
                has_viewed_integrations_page INTEGER NOT NULL DEFAULT 0,
                onboarding_completed_once INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_business_profiles_user
            ON business_profiles(user_id);

            CREATE TABLE IF NOT EXISTS accounting_connections (
                business_id TEXT PRIMARY KEY,
                provider TEXT NOT NULL DEFAULT 'quickbooks',
                connected_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS kpi_snapshots (
                kpi_id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id TEXT NOT NULL,
                month TEXT NOT NULL,
                total_revenue REAL,
                total_expenses REAL,
                net_profit REAL,
                profit_margin REAL,
                top_spending_category TEXT,
                UNIQUE (business_id, month)
            );

            CREATE TABLE IF NOT EXISTS forecast_points (
                forecast_id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id TEXT NOT NULL,
                month TEXT NOT NULL,
                cash_in REAL,
                cash_out REAL,
                net_cash REAL,
                UNIQUE (business_id, month)
            );

            CREATE TABLE IF NOT EXISTS suggested_moves (
                move_id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id TEXT NOT NULL,
                title TEXT NOT NULL,
                rationale TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_suggested_moves_business
            ON suggested_moves(business_id, move_id DESC);

            CREATE TABLE IF NOT EXISTS conversation_threads (
                thread_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                business_id TEXT,
                title TEXT NOT NULL DEFAULT '',
                first_intent TEXT NOT NULL DEFAULT 'general',
                module TEXT NOT NULL DEFAULT 'bizzy',
                pinned INTEGER NOT NULL DEFAULT 0,
                archived INTEGER NOT NULL DEFAULT 0,
                last_message_excerpt TEXT NOT NULL DEFAULT '',
                last_message_at TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS conversation_messages (
                message_id INTEGER PRIMARY KEY AUTOINCREMENT,
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
                memory_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                embedding BLOB NOT NULL,
                input_text TEXT NOT NULL DEFAULT '',
                response_text TEXT NOT NULL DEFAULT '',
                tags TEXT NOT NULL DEFAULT '[]',
                kpi_snapshot TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_memory_records_user
            ON memory_records(user_id, memory_id DESC);

            CREATE TABLE IF NOT EXISTS usage_counters (
                user_id TEXT NOT NULL,
                month TEXT NOT NULL,
                query_count INTEGER NOT NULL DEFAULT 0,
                web_lookups INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, month)
            );
            """
        )
