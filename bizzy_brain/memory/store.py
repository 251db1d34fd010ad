from __future__ import annotations

from .storage.business import MemoryBusinessMixin
from .storage.messages import MemoryMessagesMixin
from .storage.records import MemoryRecordsMixin
from .storage.schema import MemorySchemaMixin
from .storage.threads import MemoryThreadsMixin
from .storage.usage import MemoryUsageMixin
from .storage.utils import _sqlite_memory_connection


class MemoryStore(
    MemorySchemaMixin,
    MemoryBusinessMixin,
    MemoryThreadsMixin,
    MemoryMessagesMixin,
    MemoryRecordsMixin,
    MemoryUsageMixin,
):
    """SQLite store for business context, conversations, vector memory and usage counters."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("SELECT 1")

    async def close(self) -> None:
        # Connections are per-call; nothing to release.
        return None
