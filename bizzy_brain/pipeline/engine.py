from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping

from ..context.assembler import ContextAssembler
from ..context.bundle import ContextBundle
from ..errors import PersistenceError, QuotaExceeded, ValidationError
from ..intents import IntentResolution, IntentRouter
from ..services.llm_adapter import LanguageModelGateway, LLMResult, reply_text
from ..usage import UsageManager, quota_message
from ..web_lookup import WebLookup, WebLookupOutcome
from .persistence import PersistOutcome, TurnPersister, TurnRecord
from .prompt_composer import compose_messages

logger = logging.getLogger("bizzy_brain")

VALIDATION_MESSAGE = "Missing user_id or message."
FALLBACK_MESSAGE = "Something went wrong, but I’m still here. Try again in a moment."
ONBOARDING_MEMORY_TAG = "onboarding_help"


class TurnState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    INTENT_RESOLVED = "INTENT_RESOLVED"
    QUOTA_CHECKED = "QUOTA_CHECKED"
    CONTEXT_ASSEMBLED = "CONTEXT_ASSEMBLED"
    WEB_LOOKUP_OPTIONAL = "WEB_LOOKUP_OPTIONAL"
    PROMPT_COMPOSED = "PROMPT_COMPOSED"
    LLM_INVOKED = "LLM_INVOKED"
    PERSISTED = "PERSISTED"
    MEMORY_STORED = "MEMORY_STORED"
    RETURNED = "RETURNED"


@dataclass(slots=True)
class _ThreadSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass(slots=True)
class TurnRequest:
    user_id: str
    message: str
    explicit_intent: str | None = None
    parsed_input: Dict[str, Any] | None = None
    thread_id: str | None = None
    business_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "TurnRequest":
        data = dict(payload or {})
        user_id = data.get("user_id")
        message = data.get("message")
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError(VALIDATION_MESSAGE)
        if not isinstance(message, str) or not message.strip():
            raise ValidationError(VALIDATION_MESSAGE)
        parsed = data.get("parsedInput")
        return cls(
            user_id=user_id.strip(),
            message=message,
            explicit_intent=str(data.get("type") or "") or None,
            parsed_input=dict(parsed) if isinstance(parsed, Mapping) else None,
            thread_id=str(data.get("threadId") or "") or None,
            business_id=str(data.get("business_id") or "") or None,
        )


def memory_tags(intent: str, bundle: ContextBundle) -> List[str]:
    tags = [intent]
    if bundle.onboarding.prompt is not None:
        tags.insert(0, ONBOARDING_MEMORY_TAG)
    return tags


def _response(text: str, meta: Dict[str, Any], *, actions: Iterable[Dict[str, Any]] = (), follow_up: str = "") -> Dict[str, Any]:
    return {
        "responseText": text,
        "suggestedActions": list(actions),
        "followUpPrompt": follow_up,
        "meta": meta,
    }


class BizzyEngine:
    """Turns one user message into one grounded reply.

    A turn runs classify, quota, context, web, compose, one model call, then
    persistence. Turns on the same thread are serialized; other threads run freely.
    """

    def __init__(
        self,
        *,
        router: IntentRouter,
        usage: UsageManager,
        assembler: ContextAssembler,
        web: WebLookup,
        gateway: LanguageModelGateway,
        persister: TurnPersister,
        demo_mode: bool = False,
        defer_persistence: bool = True,
        closeables: Iterable[Any] = (),
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.router = router
        self.usage = usage
        self.assembler = assembler
        self.web = web
        self.gateway = gateway
        self.persister = persister
        self.demo_mode = bool(demo_mode)
        self.defer_persistence = bool(defer_persistence)
        self._closeables = list(closeables)
        self._clock = clock or time.perf_counter
        self._thread_locks: Dict[str, _ThreadSlot] = {}
        self._pending: set[asyncio.Task[PersistOutcome]] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    @property
    def open_thread_locks(self) -> int:
        return len(self._thread_locks)

    @contextlib.asynccontextmanager
    async def _thread_turn(self, thread_id: str | None) -> AsyncIterator[None]:
        """Serializes turns on one thread; the slot is dropped once no turn holds or awaits it."""
        if not thread_id:
            yield
            return
        slot = self._thread_locks.get(thread_id)
        if slot is None:
            slot = self._thread_locks[thread_id] = _ThreadSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._thread_locks[thread_id]

    async def generate_response(self, payload: Mapping[str, Any] | None) -> Dict[str, Any]:
        started = self._clock()
        states: List[str] = [TurnState.RECEIVED.value]
        try:
            request = TurnRequest.from_payload(payload)
        except ValidationError as exc:
            logger.info("[turn] rejected: %s", exc)
            return _response(VALIDATION_MESSAGE, {"error": "validation_failed", "states": states})

        try:
            async with self._thread_turn(request.thread_id):
                return await self._run_turn(request, states, started)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[turn] pipeline failed user=%s", request.user_id)
            return _response(
                FALLBACK_MESSAGE,
                {
                    "error": "gpt_core_failed",
                    "states": states,
                    "took_ms": self._elapsed_ms(started),
                    "demoMode": self.demo_mode,
                },
            )

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    async def _run_turn(self, request: TurnRequest, states: List[str], started: float) -> Dict[str, Any]:
        resolution = self.router.classify(request.message, request.explicit_intent)
        states.append(TurnState.INTENT_RESOLVED.value)

        try:
            snapshot = await self.usage.check_query_quota(request.user_id)
        except QuotaExceeded as exc:
            states.extend([TurnState.QUOTA_CHECKED.value, TurnState.RETURNED.value])
            logger.info("[turn] quota exceeded user=%s used=%s cap=%s", request.user_id, exc.used, exc.cap)
            return _response(
                quota_message(exc.cap),
                {
                    "error": "quota_exceeded",
                    "intent": resolution.intent,
                    "module": resolution.module,
                    "thread_id": request.thread_id,
                    "states": states,
                    "took_ms": self._elapsed_ms(started),
                    "demoMode": self.demo_mode,
                },
            )
        states.append(TurnState.QUOTA_CHECKED.value)

        bundle = await self.assembler.assemble(
            user_id=request.user_id,
            message=request.message,
            business_id=request.business_id,
            thread_id=request.thread_id,
            parsed_input=resolution.fold_into(request.parsed_input),
        )
        states.append(TurnState.CONTEXT_ASSEMBLED.value)

        web = await self.web.run(request.user_id, request.message, snapshot)
        states.append(TurnState.WEB_LOOKUP_OPTIONAL.value)

        messages, persona = compose_messages(
            message=request.message,
            intent=resolution.intent,
            module=resolution.module,
            bundle=bundle,
            web=web,
            demo_mode=self.demo_mode,
        )
        states.append(TurnState.PROMPT_COMPOSED.value)

        result = await self.gateway.generate(messages)
        reply = reply_text(result, request.message)
        states.append(TurnState.LLM_INVOKED.value)
        await self.usage.record_query(request.user_id)

        record = TurnRecord(
            user_id=request.user_id,
            business_id=bundle.business_id,
            thread_id=request.thread_id,
            intent=resolution.intent,
            module=resolution.module,
            message=request.message,
            reply=reply,
            tags=memory_tags(resolution.intent, bundle),
            kpi_snapshot=bundle.kpi_snapshot(),
        )
        thread_id = await self._ensure_thread(record)
        persistence = await self._persist(record, thread_id, resolution, states)
        states.append(TurnState.RETURNED.value)

        meta = self._meta(request, resolution, bundle, web, result, thread_id, states, started)
        meta["persona"] = persona.summary()
        meta["persistence"] = persistence
        logger.info(
            "[turn] user=%s intent=%s llm=%s web=%s persistence=%s took_ms=%s",
            request.user_id,
            resolution.intent,
            result.status.value,
            web.used,
            persistence,
            meta["took_ms"],
        )
        return _response(
            reply,
            meta,
            actions=bundle.onboarding.suggested_actions,
            follow_up=bundle.onboarding.follow_up_prompt,
        )

    async def _ensure_thread(self, record: TurnRecord) -> str | None:
        try:
            return await self.persister.ensure_thread(record)
        except PersistenceError as exc:
            logger.exception("[persist] %s", exc)
            return None

    async def _persist(
        self,
        record: TurnRecord,
        thread_id: str | None,
        resolution: IntentResolution,
        states: List[str],
    ) -> str:
        if self.defer_persistence and not resolution.is_scheduling:
            self._spawn(self.persister.persist(record, thread_id=thread_id))
            return "deferred"

        outcome = await self.persister.persist(record, thread_id=thread_id)
        if outcome.messages_stored:
            states.append(TurnState.PERSISTED.value)
        if outcome.memory_stored:
            states.append(TurnState.MEMORY_STORED.value)
        fatal = {"get_thread", "create_thread", "insert_message_pair"}
        return "failed" if fatal.intersection(outcome.errors) else "stored"

    def _spawn(self, coro: Any) -> None:
        task: asyncio.Task[PersistOutcome] = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_write_done)

    def _on_write_done(self, task: asyncio.Task[PersistOutcome]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[persist] deferred write failed", exc_info=exc)

    def _meta(
        self,
        request: TurnRequest,
        resolution: IntentResolution,
        bundle: ContextBundle,
        web: WebLookupOutcome,
        result: LLMResult,
        thread_id: str | None,
        states: List[str],
        started: float,
    ) -> Dict[str, Any]:
        return {
            "intent": resolution.intent,
            "module": resolution.module,
            "reclassified": resolution.reclassified,
            "thread_id": thread_id,
            "took_ms": self._elapsed_ms(started),
            "context_keys": bundle.context_keys(),
            "demoMode": self.demo_mode,
            "llm": result.meta(self.gateway.provider),
            "memory_hits": len(bundle.memory_hits),
            "web_lookup_used": web.used,
            "web_limit_reached": web.limit_reached,
            "web_not_configured": web.wanted and not self.web.configured,
            "onboarding": bundle.onboarding.meta(),
            "onboarding_actions": bundle.onboarding.suggested_actions,
            "onboarding_mode_active": bundle.onboarding.show_tone,
            "states": list(states),
        }

    async def drain(self) -> None:
        """Waits for deferred persistence tasks started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.gateway.close()
        for resource in self._closeables:
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.exception("Failed to close %s", type(resource).__name__)
