from .postgres_store import PostgresMemoryStore
from .store import MemoryStore
from .vector_memory import MemoryHit, MemoryWriteResult, VectorMemory

__all__ = ["MemoryHit", "MemoryStore", "MemoryWriteResult", "PostgresMemoryStore", "VectorMemory"]
