from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.cache import TTLCache  # noqa: E402
from bizzy_brain.errors import QuotaExceeded  # noqa: E402
from bizzy_brain.usage import UsageManager, month_key, quota_message  # noqa: E402


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _CounterStore:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], dict[str, int]] = {}
        self.fail_reads = False

    async def get_usage_counter(self, user_id: str, month: str) -> dict[str, int] | None:
        if self.fail_reads:
            raise RuntimeError("db down")
        return self.rows.get((user_id, month))

    async def increment_usage_counter(self, user_id: str, month: str, field: str, amount: int = 1) -> int:
        row = self.rows.setdefault((user_id, month), {"query_count": 0, "web_lookups": 0})
        row[field] += amount
        return row[field]


def _fixed_now() -> datetime:
    return datetime(2025, 11, 18, 15, 30, tzinfo=timezone.utc)


def test_month_key_uses_utc() -> None:
    assert month_key(_fixed_now()) == "2025-11"


def test_quota_exceeded_at_cap() -> None:
    store = _CounterStore()
    store.rows[("u1", "2025-11")] = {"query_count": 3, "web_lookups": 0}
    usage = UsageManager(store, query_cap=3, now=_fixed_now)

    with pytest.raises(QuotaExceeded) as excinfo:
        asyncio.run(usage.check_query_quota("u1"))

    assert excinfo.value.cap == 3
    assert excinfo.value.used == 3
    assert "3-query monthly limit" in quota_message(3)


def test_under_cap_returns_snapshot_and_records_increment() -> None:
    store = _CounterStore()
    usage = UsageManager(store, query_cap=3, web_lookup_cap=1, now=_fixed_now)

    async def scenario() -> tuple[int, int | None, bool]:
        snapshot = await usage.check_query_quota("u1")
        count = await usage.record_query("u1")
        return snapshot.query_count, count, usage.web_lookup_allowed(snapshot)

    before, after, web_allowed = asyncio.run(scenario())
    assert before == 0
    assert after == 1
    assert web_allowed is True


def test_counter_read_failure_degrades_to_zero() -> None:
    store = _CounterStore()
    store.fail_reads = True
    usage = UsageManager(store, now=_fixed_now)

    snapshot = asyncio.run(usage.snapshot("u1"))
    assert snapshot.query_count == 0
    assert snapshot.month == "2025-11"


def test_web_lookup_cap_zero_blocks_lookups() -> None:
    usage = UsageManager(_CounterStore(), web_lookup_cap=0, now=_fixed_now)
    snapshot = asyncio.run(usage.snapshot("u1"))
    assert usage.web_lookup_allowed(snapshot) is False


def test_ttl_cache_expires_entries_with_fake_clock() -> None:
    clock = _FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("k", "v")

    clock.now += 9.9
    assert cache.get("k") == "v"
    clock.now += 0.2
    assert cache.get("k") is None
    assert len(cache) == 0


def test_ttl_cache_evicts_least_recently_used() -> None:
    cache = TTLCache(ttl_seconds=60, max_entries=2, clock=_FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_load_shares_one_inflight_load() -> None:
    cache = TTLCache(ttl_seconds=60, clock=_FakeClock())
    calls = 0

    async def loader() -> str:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return "profile"

    async def scenario() -> list[str]:
        return list(await asyncio.gather(*(cache.get_or_load(("profile", "b1"), loader) for _ in range(3))))

    assert asyncio.run(scenario()) == ["profile", "profile", "profile"]
    assert calls == 1


def test_disabled_cache_always_loads() -> None:
    cache = TTLCache(ttl_seconds=0)
    calls = 0

    async def loader() -> int:
        nonlocal calls
        calls += 1
        return calls

    async def scenario() -> tuple[int, int]:
        return await cache.get_or_load("k", loader), await cache.get_or_load("k", loader)

    assert asyncio.run(scenario()) == (1, 2)
    assert len(cache) == 0
