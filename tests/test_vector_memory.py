from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.common import keyword_terms  # noqa: E402
from bizzy_brain.errors import ProviderError  # noqa: E402
from bizzy_brain.memory.store import MemoryStore  # noqa: E402
from bizzy_brain.memory.vector_memory import (  # noqa: E402
    VectorMemory,
    WriteOutcome,
    is_trivial,
    summarize_exchange,
)


class _BagOfWordsEmbedder:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ProviderError("openai", "embeddings down", status=503)
        vector = [0.0] * 32
        for term in keyword_terms(text):
            vector[sum(ord(ch) for ch in term) % 32] += 1.0
        return vector


class _BrokenSearchStore:
    """Inserts and lists work; similarity search raises."""

    def __init__(self) -> None:
        self.inserted: list[tuple[str, str]] = []

    async def insert_memory_record(self, user_id, embedding, input_text, response_text, tags=None, kpi_snapshot=None):
        self.inserted.append((input_text, response_text))
        return len(self.inserted)

    async def match_memory_records(self, user_id, embedding, threshold, match_count, tags=None):
        raise RuntimeError("match function missing")

    async def list_recent_memory_records(self, user_id, limit):
        return [
            {"memory_id": 7, "input_text": "How is cash flow looking?", "response_text": "Cash flow is tight.", "tags": []},
            {"memory_id": 8, "input_text": "Marketing ideas", "response_text": "Try referrals.", "tags": []},
        ]


class _FixedEmbedder:
    def __init__(self, vectors: dict[str, list[float]]) -> None:
        self.vectors = vectors

    async def embed(self, text: str) -> list[float]:
        return self.vectors[text]


class _CountingStore(MemoryStore):
    def __init__(self, db_path: Path) -> None:
        super().__init__(db_path)
        self.keyword_scans = 0

    async def list_recent_memory_records(self, user_id, limit):
        self.keyword_scans += 1
        return await super().list_recent_memory_records(user_id, limit)


def _memory(tmp_path: Path, embedder: _BagOfWordsEmbedder | None = None) -> tuple[VectorMemory, MemoryStore]:
    store = MemoryStore(tmp_path / "bizzy.db")
    asyncio.run(store.init())
    return VectorMemory(store, embedder or _BagOfWordsEmbedder()), store


def test_triviality_threshold_is_twelve_characters() -> None:
    assert is_trivial("   thanks!   ")
    assert is_trivial("")
    assert not is_trivial("how is cash?")


def test_trivial_exchange_is_never_stored(tmp_path: Path) -> None:
    memory, store = _memory(tmp_path)

    result = asyncio.run(memory.store_memory("u1", "ok", "Sure."))

    assert result.outcome is WriteOutcome.SKIPPED_TRIVIAL
    assert asyncio.run(store.count_memory_records("u1")) == 0


def test_near_duplicate_is_skipped(tmp_path: Path) -> None:
    memory, store = _memory(tmp_path)

    async def scenario() -> tuple[WriteOutcome, WriteOutcome, int]:
        first = await memory.store_memory(
            "u1",
            "What is my profit margin this month?",
            "Your margin is 23%.",
            tags=["fin_overview"],
            kpi_snapshot={"revenue_ytd": 48200, "margin_pct": 23.4, "top_expense_categories": ["Materials"]},
        )
        second = await memory.store_memory("u1", "What is my profit margin this month?", "Still 23%.")
        return first.outcome, second.outcome, await store.count_memory_records("u1")

    first, second, count = asyncio.run(scenario())
    assert first is WriteOutcome.STORED
    assert second is WriteOutcome.SKIPPED_DUPLICATE
    assert count == 1


def test_memories_are_scoped_per_user(tmp_path: Path) -> None:
    memory, _ = _memory(tmp_path)

    async def scenario() -> tuple[list, list]:
        await memory.store_memory("u1", "How do I raise prices on roofing jobs?", "Start with a 5% bump.")
        own = await memory.retrieve_memories("u1", "How do I raise prices on roofing jobs?")
        other = await memory.retrieve_memories("u2", "How do I raise prices on roofing jobs?")
        return own, other

    own, other = asyncio.run(scenario())
    assert len(own) == 1
    assert own[0].source == "vector"
    assert own[0].summary.startswith("From a previous discussion: “How do I raise prices")
    assert other == []


def test_vector_read_ranks_filters_and_never_scans_keywords(tmp_path: Path) -> None:
    store = _CountingStore(tmp_path / "bizzy.db")
    query = "How is cash flow trending?"
    memory = VectorMemory(store, _FixedEmbedder({query: [1.0, 0.0, 0.0]}))
    seeded = [
        ("Cash flow last month?", [1.0, 0.0, 0.0], ["fin_overview"]),
        ("Should I hire a second crew?", [0.8, 0.6, 0.0], ["general"]),
        ("Winter marketing ideas?", [0.6, 0.8, 0.0], ["general"]),
        ("Receivables aging report?", [0.9, 0.435889894, 0.0], ["fin_overview"]),
    ]

    async def scenario() -> tuple[dict[str, int], list, list]:
        await store.init()
        ids = {}
        for text, vector, tags in seeded:
            ids[text] = await store.insert_memory_record("u1", vector, text, "Noted.", tags=tags)
        hits = await memory.retrieve_memories("u1", query)
        general = await memory.retrieve_memories("u1", query, tags=["general"])
        return ids, hits, general

    ids, hits, general = asyncio.run(scenario())

    assert [hit.memory_id for hit in hits] == [
        ids["Cash flow last month?"],
        ids["Receivables aging report?"],
        ids["Should I hire a second crew?"],
    ]
    assert all(hit.source == "vector" for hit in hits)
    assert [hit.similarity for hit in hits] == pytest.approx([1.0, 0.9, 0.8], abs=1e-4)
    assert ids["Winter marketing ideas?"] not in {hit.memory_id for hit in hits}
    assert [hit.memory_id for hit in general] == [ids["Should I hire a second crew?"]]
    assert general[0].tags == ["general"]
    assert store.keyword_scans == 0


def test_embedding_failure_means_no_memory(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    memory, store = _memory(tmp_path, _BagOfWordsEmbedder(fail=True))

    with caplog.at_level(logging.WARNING, logger="bizzy_brain"):
        result = asyncio.run(memory.store_memory("u1", "How is cash flow this month?", "Tight but okay."))

    assert result.outcome is WriteOutcome.FAILED
    assert asyncio.run(store.count_memory_records("u1")) == 0
    assert "embedding failed" in caplog.text


def test_unavailable_similarity_search_inserts_and_warns_once(caplog: pytest.LogCaptureFixture) -> None:
    store = _BrokenSearchStore()
    memory = VectorMemory(store, _BagOfWordsEmbedder())

    async def scenario() -> list[WriteOutcome]:
        first = await memory.store_memory("u1", "How is cash flow looking?", "Tight this week.")
        second = await memory.store_memory("u1", "Any marketing ideas for winter?", "Try referrals.")
        return [first.outcome, second.outcome]

    with caplog.at_level(logging.WARNING, logger="bizzy_brain"):
        outcomes = asyncio.run(scenario())

    assert outcomes == [WriteOutcome.STORED, WriteOutcome.STORED]
    assert len(store.inserted) == 2
    assert caplog.text.count("similarity search unavailable") == 1


def test_read_path_falls_back_to_keyword_scan() -> None:
    memory = VectorMemory(_BrokenSearchStore(), _BagOfWordsEmbedder())

    hits = asyncio.run(memory.retrieve_memories("u1", "what about my cash flow"))

    assert len(hits) == 1
    assert hits[0].memory_id == 7
    assert hits[0].source == "keyword"
    assert hits[0].similarity == pytest.approx(0.2)


def test_trivial_query_skips_retrieval() -> None:
    embedder = _BagOfWordsEmbedder()
    memory = VectorMemory(_BrokenSearchStore(), embedder)

    assert asyncio.run(memory.retrieve_memories("u1", "hi")) == []
    assert embedder.calls == []


def test_synopsis_clips_long_quotes() -> None:
    text = summarize_exchange("q" * 200, "short answer")
    assert "“" + "q" * 140 + "…”" in text
    assert text.endswith("→ Bizzy replied: “short answer”")
