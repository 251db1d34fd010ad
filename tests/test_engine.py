from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.common import keyword_terms  # noqa: E402
from bizzy_brain.context import ContextAssembler  # noqa: E402
from bizzy_brain.intents import IntentRouter  # noqa: E402
from bizzy_brain.memory.store import MemoryStore  # noqa: E402
from bizzy_brain.memory.vector_memory import VectorMemory  # noqa: E402
from bizzy_brain.pipeline import BizzyEngine, TurnPersister, TurnState  # noqa: E402
from bizzy_brain.pipeline.engine import FALLBACK_MESSAGE, VALIDATION_MESSAGE  # noqa: E402
from bizzy_brain.services.llm_adapter import LanguageModelGateway, stub_reply  # noqa: E402
from bizzy_brain.usage import UsageManager, quota_message  # noqa: E402
from bizzy_brain.web_lookup import WebLookup  # noqa: E402

NOW = datetime(2025, 11, 18, 15, 0, tzinfo=timezone.utc)
REPLY = "Verdict: **Depends**\n\nYou can cover it if November collections land.\n"


class _Embedder:
    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * 32
        for term in keyword_terms(text):
            vector[sum(ord(ch) for ch in term) % 32] += 1.0
        return vector


class _Chat:
    def __init__(self, reply: str = REPLY) -> None:
        self.model = "gpt-test"
        self.reply = reply
        self.seen: list[list[dict[str, str]]] = []

    async def complete(self, messages):
        self.seen.append([dict(message) for message in messages])
        return {"model": self.model, "choices": [{"message": {"content": self.reply}, "finish_reason": "stop"}]}


class _Search:
    configured = True

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def search(self, query: str) -> dict:
        self.queries.append(query)
        return {"organic_results": [{"title": "Panthers 23-20 Falcons", "snippet": "Late field goal.", "link": "https://espn.com/x"}]}


def _setup(
    tmp_path: Path,
    *,
    chat: _Chat | None = None,
    search: _Search | None = None,
    query_cap: int = 300,
    seed_business: bool = False,
) -> tuple[BizzyEngine, MemoryStore]:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def seed() -> None:
        await store.init()
        if seed_business:
            await store.upsert_business_profile("b1", "u1", name="Summit Ridge", business_type="LLC", industry="Roofing")
            await store.save_kpi_snapshot(
                "b1",
                "2025-11",
                total_revenue=52000.0,
                total_expenses=40000.0,
                net_profit=12000.0,
                profit_margin=23.0,
                top_spending_category="Materials",
            )

    asyncio.run(seed())

    embedder = _Embedder()
    memory = VectorMemory(store, embedder)
    usage = UsageManager(store, query_cap=query_cap, web_lookup_cap=20, now=lambda: NOW)
    engine = BizzyEngine(
        router=IntentRouter(),
        usage=usage,
        assembler=ContextAssembler(store, memory, now=lambda: NOW),
        web=WebLookup(search, usage, today=lambda: NOW.date()),
        gateway=LanguageModelGateway(chat),
        persister=TurnPersister(store, memory, embedder, now=lambda: NOW),
    )
    return engine, store


def test_affordability_turn_end_to_end(tmp_path: Path) -> None:
    chat = _Chat()
    engine, store = _setup(tmp_path, chat=chat, seed_business=True)
    message = "Can I afford a $12k truck this month?"

    async def scenario():
        result = await engine.generate_response({"user_id": "u1", "message": message})
        await engine.drain()
        thread_id = result["meta"]["thread_id"]
        return (
            result,
            await store.list_recent_messages(thread_id, 12),
            await store.list_recent_memory_records("u1", 5),
            await store.get_usage_counter("u1", "2025-11"),
        )

    result, messages, memories, usage = asyncio.run(scenario())
    meta = result["meta"]

    assert len(chat.seen) == 1
    sent = chat.seen[0]
    assert sent[0]["role"] == "system"
    assert "Affordability:" in sent[0]["content"]
    assert "### Latest Metrics" in sent[0]["content"]
    assert sent[-1] == {"role": "user", "content": message}

    assert result["responseText"] == REPLY.strip()
    assert meta["intent"] == "affordability_check"
    assert meta["reclassified"] is True
    assert meta["persistence"] == "deferred"
    assert meta["llm"]["status"] == "text"
    assert "amount" in meta["context_keys"]
    assert meta["states"] == [
        TurnState.RECEIVED.value,
        TurnState.INTENT_RESOLVED.value,
        TurnState.QUOTA_CHECKED.value,
        TurnState.CONTEXT_ASSEMBLED.value,
        TurnState.WEB_LOOKUP_OPTIONAL.value,
        TurnState.PROMPT_COMPOSED.value,
        TurnState.LLM_INVOKED.value,
        TurnState.RETURNED.value,
    ]

    assert [(row["role"], row["content"]) for row in messages] == [("assistant", REPLY.strip()), ("user", message)]
    assert len(memories) == 1
    assert memories[0]["tags"] == ["affordability_check"]
    assert memories[0]["kpi_snapshot"]["revenue_ytd"] == 52000.0
    assert usage is not None and usage["query_count"] == 1


def test_missing_user_id_is_rejected_without_work(tmp_path: Path) -> None:
    chat = _Chat()
    engine, _ = _setup(tmp_path, chat=chat)

    result = asyncio.run(engine.generate_response({"user_id": "", "message": "hi there"}))

    assert result["responseText"] == VALIDATION_MESSAGE
    assert result["meta"]["error"] == "validation_failed"
    assert chat.seen == []


def test_unexpected_failure_returns_fallback(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    chat = _Chat()
    engine, _ = _setup(tmp_path, chat=chat)

    async def boom(**kwargs):
        raise RuntimeError("context exploded")

    monkeypatch.setattr(engine.assembler, "assemble", boom)

    with caplog.at_level(logging.ERROR, logger="bizzy_brain"):
        result = asyncio.run(engine.generate_response({"user_id": "u1", "message": "How are we doing this month?"}))

    assert result["responseText"] == FALLBACK_MESSAGE
    assert result["meta"]["error"] == "gpt_core_failed"
    assert chat.seen == []
    assert "pipeline failed user=u1" in caplog.text


def test_quota_reached_short_circuits(tmp_path: Path) -> None:
    chat = _Chat()
    engine, store = _setup(tmp_path, chat=chat, query_cap=2)

    async def scenario():
        await store.increment_usage_counter("u1", "2025-11", "query_count")
        await store.increment_usage_counter("u1", "2025-11", "query_count")
        result = await engine.generate_response({"user_id": "u1", "message": "How are we doing this month?"})
        return result, await store.get_usage_counter("u1", "2025-11")

    result, usage = asyncio.run(scenario())

    assert result["responseText"] == quota_message(2)
    assert result["meta"]["error"] == "quota_exceeded"
    assert chat.seen == []
    assert usage["query_count"] == 2


def test_scheduling_turn_persists_before_returning(tmp_path: Path) -> None:
    chat = _Chat(reply="Booked: crew walkthrough Friday 9am.")
    engine, store = _setup(tmp_path, chat=chat)

    async def scenario():
        result = await engine.generate_response(
            {"user_id": "u1", "message": "Please schedule a walkthrough with the Harper crew on Friday at 9am"}
        )
        pending = engine.pending_writes
        messages = await store.list_recent_messages(result["meta"]["thread_id"], 12)
        return result, pending, messages

    result, pending, messages = asyncio.run(scenario())
    meta = result["meta"]

    assert meta["intent"] == "calendar_schedule"
    assert meta["module"] == "calendar"
    assert meta["persistence"] == "stored"
    assert pending == 0
    assert len(messages) == 2
    assert TurnState.PERSISTED.value in meta["states"]
    assert TurnState.MEMORY_STORED.value in meta["states"]
    assert "Scheduling:" in chat.seen[0][0]["content"]


def test_live_question_uses_web_lookup(tmp_path: Path) -> None:
    chat = _Chat(reply="They won 23-20.")
    search = _Search()
    engine, store = _setup(tmp_path, chat=chat, search=search)

    async def scenario():
        result = await engine.generate_response({"user_id": "u1", "message": "Did the Panthers win today?"})
        await engine.drain()
        return result, await store.get_usage_counter("u1", "2025-11")

    result, usage = asyncio.run(scenario())

    assert result["meta"]["web_lookup_used"] is True
    assert search.queries == ["Did the Panthers win today?"]
    assert "Web search results as of 2025-11-18:" in chat.seen[0][0]["content"]
    assert usage["web_lookups"] == 1
    assert usage["query_count"] == 1


def test_unconfigured_model_still_replies_and_counts(tmp_path: Path) -> None:
    engine, store = _setup(tmp_path, chat=None)
    message = "What should I focus on this quarter?"

    async def scenario():
        result = await engine.generate_response({"user_id": "u1", "message": message})
        await engine.close()
        return result, await store.get_usage_counter("u1", "2025-11")

    result, usage = asyncio.run(scenario())

    assert result["responseText"] == stub_reply(message)
    assert result["meta"]["llm"]["status"] == "unavailable"
    assert usage["query_count"] == 1


def test_follow_up_turn_sees_thread_history(tmp_path: Path) -> None:
    chat = _Chat(reply="Leasing keeps cash free.")
    engine, _ = _setup(tmp_path, chat=chat)

    async def scenario():
        first = await engine.generate_response({"user_id": "u1", "message": "Should I lease or buy a new truck?"})
        await engine.drain()
        second = await engine.generate_response(
            {"user_id": "u1", "message": "What would the monthly payment look like?", "threadId": first["meta"]["thread_id"]}
        )
        await engine.drain()
        return first, second

    first, second = asyncio.run(scenario())

    assert second["meta"]["thread_id"] == first["meta"]["thread_id"]
    history = chat.seen[1][-3:]
    assert history == [
        {"role": "user", "content": "Should I lease or buy a new truck?"},
        {"role": "assistant", "content": "Leasing keeps cash free."},
        {"role": "user", "content": "What would the monthly payment look like?"},
    ]


def test_onboarding_question_returns_actions_and_follow_up(tmp_path: Path) -> None:
    engine, store = _setup(tmp_path, chat=_Chat(reply="Let's get you set up."))

    async def scenario():
        result = await engine.generate_response({"user_id": "u1", "message": "How do I set up my business in Bizzi?"})
        await engine.drain()
        return result, await store.list_recent_memory_records("u1", 5)

    result, memories = asyncio.run(scenario())

    assert result["suggestedActions"] == [{"type": "show_checklist", "checklistId": "bizzy_onboarding"}]
    assert result["followUpPrompt"] == "Want me to walk you through setup while we are here? (yes or no)"
    assert result["meta"]["onboarding"]["promptId"] == "setup_biz"
    assert result["meta"]["onboarding_mode_active"] is True
    assert memories[0]["tags"] == ["onboarding_help", "general"]


def test_unknown_thread_id_is_created_on_first_turn(tmp_path: Path) -> None:
    engine, store = _setup(tmp_path, chat=_Chat(reply="Noted."))

    async def scenario():
        result = await engine.generate_response(
            {"user_id": "u1", "message": "Where did our margin go this month?", "threadId": "client-abc"}
        )
        await engine.drain()
        return result, await store.get_thread("client-abc"), await store.list_recent_messages("client-abc", 12)

    result, thread, messages = asyncio.run(scenario())

    assert result["meta"]["thread_id"] == "client-abc"
    assert thread is not None and thread["user_id"] == "u1"
    assert thread["last_message_excerpt"] == "Noted."
    assert [row["role"] for row in messages] == ["assistant", "user"]


def test_failed_thread_touch_still_reports_stored_messages(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    engine, store = _setup(tmp_path, chat=_Chat(reply="Booked for Friday."))

    async def broken_touch(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "touch_thread", broken_touch)

    async def scenario():
        result = await engine.generate_response(
            {"user_id": "u1", "message": "Please schedule a walkthrough with the Harper crew on Friday at 9am"}
        )
        return result, await store.list_recent_messages(result["meta"]["thread_id"], 12)

    with caplog.at_level(logging.ERROR, logger="bizzy_brain"):
        result, messages = asyncio.run(scenario())

    assert len(messages) == 2
    assert result["meta"]["persistence"] == "stored"
    assert TurnState.PERSISTED.value in result["meta"]["states"]
    assert "touch_thread" in caplog.text


def test_thread_locks_are_released_after_turns(tmp_path: Path) -> None:
    chat = _Chat(reply="Sounds good.")
    engine, _ = _setup(tmp_path, chat=chat)

    async def scenario() -> int:
        for index in range(20):
            await engine.generate_response(
                {"user_id": "u1", "message": f"Quick check on job number {index}", "threadId": f"t-{index}"}
            )
        await asyncio.gather(
            engine.generate_response({"user_id": "u1", "message": "How are we doing on cash?", "threadId": "shared"}),
            engine.generate_response({"user_id": "u1", "message": "And what about payroll?", "threadId": "shared"}),
        )
        await engine.drain()
        return engine.open_thread_locks

    assert asyncio.run(scenario()) == 0
    assert len(chat.seen) == 22
