from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from ..common import clip, collapse_spaces
from ..errors import PersistenceError
from ..memory.vector_memory import Embedder, MemoryWriteResult, VectorMemory, WriteOutcome

logger = logging.getLogger("bizzy_brain")

TITLE_CHARS = 60
EXCERPT_CHARS = 140
DEFAULT_TITLE = "New conversation"


def thread_title(message: str) -> str:
    return collapse_spaces(message)[:TITLE_CHARS] or DEFAULT_TITLE


def preview(text: str) -> str:
    return clip(collapse_spaces(text), EXCERPT_CHARS)


@dataclass(slots=True)
class TurnRecord:
    """Everything the persister needs after the model call; content is stored exactly as given."""

    user_id: str
    business_id: str | None
    thread_id: str | None
    intent: str
    module: str
    message: str
    reply: str
    tags: List[str] = field(default_factory=list)
    kpi_snapshot: Dict[str, Any] | None = None


@dataclass(slots=True)
class PersistOutcome:
    thread_id: str | None = None
    messages_stored: bool = False
    memory: MemoryWriteResult | None = None
    errors: List[str] = field(default_factory=list)

    @property
    def memory_stored(self) -> bool:
        return self.memory is not None and self.memory.outcome is WriteOutcome.STORED


class TurnPersister:
    def __init__(
        self,
        store: Any,
        memory: VectorMemory | None,
        embedder: Embedder | None,
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.memory = memory
        self.embedder = embedder
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def _embed_or_none(self, text: str) -> List[float] | None:
        if self.embedder is None:
            return None
        try:
            return await self.embedder.embed(text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[persist] message embedding failed; storing without vector: %s", exc)
            return None

    async def ensure_thread(self, record: TurnRecord) -> str:
        """Returns the turn's thread id, creating the thread when it is new or unknown to the store."""
        if record.thread_id:
            try:
                existing = await self.store.get_thread(record.thread_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                raise PersistenceError("get_thread", exc) from exc
            if existing is not None:
                return record.thread_id
            logger.info("[persist] thread %s not found; creating it for user=%s", record.thread_id, record.user_id)
        try:
            return await self.store.create_thread(
                record.user_id,
                record.business_id,
                thread_title(record.message),
                record.intent,
                record.module,
                thread_id=record.thread_id,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise PersistenceError("create_thread", exc) from exc

    async def _store_messages(self, record: TurnRecord, thread_id: str) -> str:
        user_embedding, assistant_embedding = await asyncio.gather(
            self._embed_or_none(f"User said: {record.message}"),
            self._embed_or_none(f"Bizzy replied: {record.reply}"),
        )
        stamp = self._now().isoformat()
        try:
            await self.store.insert_message_pair(
                thread_id,
                record.user_id,
                record.business_id,
                record.message,
                record.reply,
                stamp,
                user_embedding=user_embedding,
                assistant_embedding=assistant_embedding,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise PersistenceError("insert_message_pair", exc) from exc
        return stamp

    async def _touch_thread(self, record: TurnRecord, thread_id: str, stamp: str) -> None:
        try:
            await self.store.touch_thread(thread_id, preview(record.reply), stamp)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise PersistenceError("touch_thread", exc) from exc

    async def persist(self, record: TurnRecord, *, thread_id: str | None = None) -> PersistOutcome:
        """Writes the message pair and the memory record; neither write depends on the other."""
        outcome = PersistOutcome(thread_id=thread_id)
        try:
            if outcome.thread_id is None:
                outcome.thread_id = await self.ensure_thread(record)
            stamp = await self._store_messages(record, outcome.thread_id)
            outcome.messages_stored = True
            await self._touch_thread(record, outcome.thread_id, stamp)
        except PersistenceError as exc:
            logger.exception("[persist] %s", exc)
            outcome.errors.append(exc.operation)

        if self.memory is not None:
            outcome.memory = await self.memory.store_memory(
                record.user_id,
                record.message,
                record.reply,
                tags=record.tags,
                kpi_snapshot=record.kpi_snapshot,
            )
            if outcome.memory.outcome is WriteOutcome.FAILED:
                outcome.errors.append("store_memory")
        return outcome
