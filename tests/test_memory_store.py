from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import numpy as np
import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.memory.storage.schema import MemorySchemaMixin  # noqa: E402
from bizzy_brain.memory.storage.utils import pack_vector, top_similar, unpack_vector  # noqa: E402
from bizzy_brain.memory.store import MemoryStore  # noqa: E402


def test_schema_mismatch_raises_without_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", raising=False)
    db_path = tmp_path / "bizzy.db"

    asyncio.run(MemorySchemaMixin(db_path).init())
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    with pytest.raises(RuntimeError, match="schema version mismatch"):
        asyncio.run(MemorySchemaMixin(db_path).init())


def test_schema_mismatch_can_reset_with_explicit_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "bizzy.db"
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    monkeypatch.setenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "1")
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
    assert version == MemorySchemaMixin.SCHEMA_VERSION


def test_business_context_reads_keep_their_ordering(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def scenario() -> tuple[list, list, dict | None, dict | None, bool]:
        await store.init()
        await store.upsert_business_profile("b1", "u1", name="Summit", business_type="LLC", industry="Roofing")
        for month, revenue in (("2025-09", 40000.0), ("2025-11", 52000.0), ("2025-10", 45000.0)):
            await store.save_kpi_snapshot("b1", month, total_revenue=revenue, net_profit=revenue / 5)
        for month in ("2026-02", "2025-12", "2026-01"):
            await store.save_forecast_point("b1", month, cash_in=10.0, cash_out=4.0, net_cash=6.0)
        await store.set_accounting_connection("b1", True)
        kpis = await store.list_kpi_snapshots("b1", 2)
        forecast = await store.list_forecast_points("b1", 6)
        by_user = await store.get_business_profile(user_id="u1")
        missing = await store.get_business_profile()
        connected = await store.has_accounting_connection("b1")
        return kpis, forecast, by_user, missing, connected

    kpis, forecast, by_user, missing, connected = asyncio.run(scenario())

    assert [row["month"] for row in kpis] == ["2025-11", "2025-10"]
    assert [row["month"] for row in forecast] == ["2025-12", "2026-01", "2026-02"]
    assert by_user is not None and by_user["business_id"] == "b1"
    assert by_user["onboarding_completed_once"] is False
    assert missing is None
    assert connected is True


def test_message_pair_roundtrip_is_byte_identical(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")
    user_text = "  Can I afford\ta truck?\n"
    reply_text = "Verdict: **Depends** — see below.\n\n"

    async def scenario() -> tuple[list, dict | None]:
        await store.init()
        thread_id = await store.create_thread("u1", "b1", "Truck", "affordability_check", "bizzy")
        await store.insert_message_pair(
            thread_id, "u1", "b1", user_text, reply_text, "2025-11-18T10:00:00+00:00", user_embedding=[0.1, 0.2]
        )
        await store.touch_thread(thread_id, "Verdict: Depends", "2025-11-18T10:00:00+00:00")
        return await store.list_recent_messages(thread_id, 12), await store.get_thread(thread_id)

    messages, thread = asyncio.run(scenario())

    assert [m["role"] for m in messages] == ["assistant", "user"]
    assert messages[0]["content"] == reply_text
    assert messages[1]["content"] == user_text
    assert messages[0]["created_at"] == messages[1]["created_at"]
    assert messages[0]["embedding"] is None
    assert messages[1]["embedding"] == pytest.approx([0.1, 0.2])
    assert thread is not None
    assert thread["last_message_excerpt"] == "Verdict: Depends"
    assert thread["archived"] is False


def test_thread_flags_update_only_what_is_given(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def scenario() -> list[dict | None]:
        await store.init()
        thread_id = await store.create_thread("u1", None, "Hiring", "general", "bizzy")
        seen = []
        await store.set_thread_flags(thread_id, pinned=True)
        seen.append(await store.get_thread(thread_id))
        await store.set_thread_flags(thread_id, archived=True)
        seen.append(await store.get_thread(thread_id))
        await store.set_thread_flags(thread_id, pinned=False)
        await store.set_thread_flags(thread_id)
        seen.append(await store.get_thread(thread_id))
        return seen

    pinned, archived, unpinned = asyncio.run(scenario())

    assert (pinned["pinned"], pinned["archived"]) == (True, False)
    assert (archived["pinned"], archived["archived"]) == (True, True)
    assert (unpinned["pinned"], unpinned["archived"]) == (False, True)


def test_create_thread_keeps_a_caller_chosen_id(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def scenario() -> tuple[str, str, dict | None]:
        await store.init()
        first = await store.create_thread("u1", None, "Truck", "general", "bizzy", thread_id="client-thread-1")
        again = await store.create_thread("u1", None, "Other", "general", "bizzy", thread_id="client-thread-1")
        return first, again, await store.get_thread("client-thread-1")

    first, again, thread = asyncio.run(scenario())

    assert first == again == "client-thread-1"
    assert thread is not None and thread["title"] == "Truck"


def test_usage_counters_increment_per_month(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def scenario() -> tuple[int, int, dict | None, dict | None]:
        await store.init()
        await store.increment_usage_counter("u1", "2025-11", "query_count")
        second = await store.increment_usage_counter("u1", "2025-11", "query_count")
        lookups = await store.increment_usage_counter("u1", "2025-11", "web_lookups")
        return (
            second,
            lookups,
            await store.get_usage_counter("u1", "2025-11"),
            await store.get_usage_counter("u1", "2025-12"),
        )

    second, lookups, november, december = asyncio.run(scenario())
    assert second == 2
    assert lookups == 1
    assert november is not None and november["query_count"] == 2
    assert december is None


def test_top_similar_filters_by_threshold_and_dimension() -> None:
    candidates = [
        (1, np.array([1.0, 0.0], dtype=np.float32)),
        (2, np.array([0.9, 0.1], dtype=np.float32)),
        (3, np.array([0.0, 1.0], dtype=np.float32)),
        (4, np.array([1.0, 0.0, 0.0], dtype=np.float32)),
        (5, np.array([0.0, 0.0], dtype=np.float32)),
    ]

    ranked = top_similar(candidates, [1.0, 0.0], threshold=0.75, match_count=3)

    assert [memory_id for memory_id, _ in ranked] == [1, 2]
    assert ranked[0][1] == pytest.approx(1.0)
    assert ranked[1][1] == pytest.approx(0.9939, abs=1e-4)
    assert top_similar(candidates, [0.0, 0.0], threshold=0.0, match_count=3) == []


def test_top_similar_breaks_ties_newest_first_and_caps_count() -> None:
    same = np.array([0.6, 0.8], dtype=np.float32)
    candidates = [(7, same), (9, same), (8, same)]

    ranked = top_similar(candidates, [0.6, 0.8], threshold=0.5, match_count=2)

    assert [memory_id for memory_id, _ in ranked] == [9, 8]


def test_vectors_round_trip_through_blobs_and_legacy_json() -> None:
    assert unpack_vector(pack_vector([0.5, -1.0])).tolist() == [0.5, -1.0]
    assert unpack_vector("[0.25, 1]").tolist() == [0.25, 1.0]
    assert unpack_vector(b"") is None
    assert unpack_vector(None) is None
