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

from bizzy_brain.context import (  # noqa: E402
    ContextAssembler,
    ContextBundle,
    build_memory_context,
    compress_recent_chat,
    compute_kpi_deltas,
)
from bizzy_brain.memory.store import MemoryStore  # noqa: E402
from bizzy_brain.memory.vector_memory import MemoryHit  # noqa: E402

DEMO_PATH = PROJECT_ROOT / "bizzy_brain" / "demo" / "demo_data.json"
NOW = datetime(2025, 11, 18, 9, 30, tzinfo=timezone.utc)


class _FakeMemory:
    def __init__(self, hits: list[MemoryHit] | None = None) -> None:
        self.hits = hits or []
        self.queries: list[tuple[str, str]] = []

    async def retrieve_memories(self, user_id, query, *, tags=None):
        self.queries.append((user_id, query))
        return list(self.hits)


class _FlakyStore:
    """Profile reads work; every other business read raises."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def get_business_profile(self, *, business_id=None, user_id=None):
        self.calls.append("profile")
        return {"business_id": "b1", "user_id": user_id, "name": "Summit", "industry": "Roofing", "business_type": "LLC"}

    async def list_kpi_snapshots(self, business_id, limit):
        self.calls.append("kpis")
        raise RuntimeError("kpi table locked")

    async def list_forecast_points(self, business_id, limit):
        self.calls.append("forecast")
        raise RuntimeError("forecast table locked")

    async def list_suggested_moves(self, business_id, limit):
        self.calls.append("moves")
        return [{"title": "Raise prices", "rationale": "Margins are thin."}]

    async def has_accounting_connection(self, business_id):
        self.calls.append("accounting")
        raise RuntimeError("oauth table missing")

    async def list_recent_messages(self, thread_id, limit):
        self.calls.append("recent_chat")
        return []


def _chat(count: int) -> list[dict[str, str]]:
    # newest first, m1 is the oldest turn
    return [
        {"role": "user" if index % 2 else "assistant", "content": f"m{index}"}
        for index in range(count, 0, -1)
    ]


def _seeded_store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "bizzy.db")

    async def seed() -> None:
        await store.init()
        await store.upsert_business_profile("b1", "u1", name="Summit", business_type="LLC", industry="Roofing")
        await store.save_kpi_snapshot(
            "b1",
            "2025-10",
            total_revenue=45000.0,
            total_expenses=36000.0,
            net_profit=9000.0,
            profit_margin=20.0,
        )
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
    return store


def test_nine_turns_keep_six_verbatim_and_summarize_three() -> None:
    recent, summary = compress_recent_chat(_chat(9), verbatim=6, summary_chars=600)

    assert [item["content"] for item in recent] == ["m9", "m8", "m7", "m6", "m5", "m4"]
    assert summary == "user: m1 • assistant: m2 • user: m3"


def test_summary_is_clipped_with_ellipsis_inside_limit() -> None:
    older = [{"role": "system", "content": "word " * 50}] * 3
    _, summary = compress_recent_chat([{"role": "user", "content": "latest"}, *older], verbatim=1, summary_chars=40)

    assert len(summary) <= 40
    assert summary.endswith("…")
    assert summary.startswith("system: word word")


def test_short_window_has_no_summary() -> None:
    recent, summary = compress_recent_chat(_chat(4), verbatim=6, summary_chars=600)
    assert len(recent) == 4
    assert summary == ""


def test_kpi_deltas_compare_two_newest_snapshots() -> None:
    deltas = compute_kpi_deltas(
        [
            {"net_profit": 12000, "total_revenue": 52000, "total_expenses": 40000, "profit_margin": 23.0},
            {"net_profit": 9000, "total_revenue": 45000, "total_expenses": 36000, "profit_margin": 20.0},
        ]
    )

    assert deltas.net_profit == 3000
    assert deltas.revenue == 7000
    assert deltas.expenses == 4000
    assert deltas.margin_pts == 3.0
    assert compute_kpi_deltas([{"net_profit": 1}]).empty


def test_live_business_data_is_loaded_with_deltas(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    assembler = ContextAssembler(store, _FakeMemory(), now=lambda: NOW)

    bundle = asyncio.run(assembler.assemble(user_id="u1", message="How did we do last month?"))

    assert bundle.business_id == "b1"
    assert [row["month"] for row in bundle.kpis] == ["2025-11", "2025-10"]
    assert bundle.deltas.net_profit == 3000
    assert bundle.demo_snapshot is None
    assert "Recent financial summary:" in bundle.memory_context


def test_demo_data_never_overrides_live_kpis(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    assembler = ContextAssembler(store, _FakeMemory(), demo_mode=True, demo_data_path=DEMO_PATH, now=lambda: NOW)

    bundle = asyncio.run(assembler.assemble(user_id="u1", message="Give me a snapshot", business_id="b1"))

    assert bundle.kpis[0]["total_revenue"] == 52000.0
    assert bundle.forecast == [{"month": "2025-11", "cash_in": 52000.0, "cash_out": 41500.0, "net_cash": 10500.0}]
    assert bundle.moves[0]["title"] == "Negotiate Subcontractors vendor terms"
    assert bundle.demo_snapshot is not None
    assert "[Demo Business Snapshot]" in bundle.memory_context
    assert "Invoice INV-1042" in bundle.memory_context
    assert "demoSnapshot" in bundle.context_keys()


def test_demo_fills_everything_without_a_business(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")
    asyncio.run(store.init())
    assembler = ContextAssembler(store, None, demo_mode=True, demo_data_path=DEMO_PATH, now=lambda: NOW)

    bundle = asyncio.run(assembler.assemble(user_id="u1", message="Give me a snapshot"))

    assert bundle.profile is None
    assert bundle.kpis[0]["total_revenue"] == 48200.0
    assert bundle.kpis[0]["top_spending_category"] == "Subcontractors"
    assert bundle.has_context


def test_missing_demo_file_logs_and_skips(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    store = MemoryStore(tmp_path / "bizzy.db")
    asyncio.run(store.init())
    assembler = ContextAssembler(store, None, demo_mode=True, demo_data_path=tmp_path / "nope.json")

    with caplog.at_level(logging.WARNING, logger="bizzy_brain"):
        bundle = asyncio.run(assembler.assemble(user_id="u1", message="Give me a snapshot"))

    assert bundle.demo_snapshot is None
    assert bundle.kpis == []
    assert "snapshot load failed" in caplog.text


def test_caller_supplied_rows_suppress_fetches() -> None:
    store = _FlakyStore()
    parsed_input = {
        "kpis": [{"month": "2025-11", "total_revenue": 1000}],
        "forecast": [{"month": "2025-12", "cash_in": 10}],
        "recentChat": [{"role": "user", "content": "earlier question"}],
    }
    assembler = ContextAssembler(store, _FakeMemory())

    bundle = asyncio.run(
        assembler.assemble(user_id="u1", message="Any risks?", thread_id="t1", parsed_input=parsed_input)
    )

    assert "kpis" not in store.calls
    assert "forecast" not in store.calls
    assert "recent_chat" not in store.calls
    assert bundle.kpis == [{"month": "2025-11", "total_revenue": 1000}]
    assert bundle.recent_chat == [{"role": "user", "content": "earlier question"}]
    assert bundle.moves == [{"title": "Raise prices", "rationale": "Margins are thin."}]


def test_failed_reads_degrade_to_empty(caplog: pytest.LogCaptureFixture) -> None:
    assembler = ContextAssembler(_FlakyStore(), _FakeMemory())

    with caplog.at_level(logging.WARNING, logger="bizzy_brain"):
        bundle = asyncio.run(assembler.assemble(user_id="u1", message="How are we doing?"))

    assert bundle.kpis == []
    assert bundle.forecast == []
    assert bundle.accounting_connected is False
    assert bundle.onboarding.mode_active is True
    assert "kpis fetch failed" in caplog.text
    assert "accounting fetch failed" in caplog.text


def test_caller_profile_wins_over_store() -> None:
    store = _FlakyStore()
    assembler = ContextAssembler(store, None)

    bundle = asyncio.run(
        assembler.assemble(
            user_id="u1",
            message="hello",
            parsed_input={"businessProfile": {"business_id": "b9", "name": "Caller Co"}},
        )
    )

    assert "profile" not in store.calls
    assert bundle.business_id == "b9"
    assert bundle.profile == {"business_id": "b9", "name": "Caller Co"}


def test_memory_context_sections_in_order() -> None:
    bundle = ContextBundle(
        user_id="u1",
        kpis=[
            {
                "total_revenue": 52000,
                "total_expenses": 40000,
                "net_profit": 12000,
                "profit_margin": 23,
                "top_spending_category": None,
            }
        ],
        moves=[{"title": "Chase AR", "rationale": "Two invoices are late."}],
        recent_summary="user: m1",
        memory_hits=[MemoryHit(memory_id=1, summary="From a previous discussion: “cash”", similarity=0.9)],
    )

    sections = build_memory_context(bundle).split("\n\n")

    assert sections[0] == "Context from past Bizzi conversations:\nFrom a previous discussion: “cash”"
    assert sections[1] == "Recent conversation summary (older turns): user: m1"
    assert sections[2] == (
        "Recent financial summary:\nRevenue $52,000 • Expenses $40,000 • Net Profit $12,000 • "
        "Margin 23% • Top spend: n/a."
    )
    assert sections[3] == "Suggested Financial Moves:\n- Chase AR: Two invoices are late."
