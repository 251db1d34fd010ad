from __future__ import annotations

from typing import Any

from ..config import Settings
from .store import MemoryStore

SUPPORTED_BACKENDS = ("sqlite", "postgres")


def build_memory_store(settings: Settings) -> Any:
    """Returns the store named by ``MEMORY_BACKEND``; both expose the same async API."""
    backend = settings.memory_backend.lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
    if backend == "sqlite":
        return MemoryStore(settings.sqlite_path)

    if not settings.postgres_dsn:
        raise ValueError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")

    from .postgres_store import PostgresMemoryStore

    return PostgresMemoryStore(settings.postgres_dsn)
