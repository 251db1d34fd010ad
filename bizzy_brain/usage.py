from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from .errors import QuotaExceeded

logger = logging.getLogger("bizzy_brain")

QUERY_FIELD = "query_count"
WEB_LOOKUP_FIELD = "web_lookups"


class UsageCounterStore(Protocol):
    async def get_usage_counter(self, user_id: str, month: str) -> dict[str, Any] | None: ...

    async def increment_usage_counter(self, user_id: str, month: str, field: str, amount: int = 1) -> int: ...


def month_key(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


def quota_message(cap: int) -> str:
    return (
        f"You've reached the current {cap}-query monthly limit. "
        "Try again next month or contact support to raise the cap."
    )


@dataclass(slots=True)
class UsageSnapshot:
    month: str
    query_count: int
    web_lookups: int


class UsageManager:
    """Soft monthly caps per (user, month).

    Reads and increments are separate round trips without a lock, so concurrent
    turns from the same user can overshoot the cap slightly.
    """

    def __init__(
        self,
        store: UsageCounterStore,
        *,
        query_cap: int = 300,
        web_lookup_cap: int = 20,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.query_cap = max(1, int(query_cap))
        self.web_lookup_cap = max(0, int(web_lookup_cap))
        self._now = now or (lambda: datetime.now(timezone.utc))

    def current_month(self) -> str:
        return month_key(self._now())

    async def snapshot(self, user_id: str) -> UsageSnapshot:
        month = self.current_month()
        try:
            row = await self.store.get_usage_counter(user_id, month)
        except Exception:
            logger.exception("Usage counter read failed for user=%s month=%s", user_id, month)
            row = None
        row = row or {}
        return UsageSnapshot(
            month=month,
            query_count=int(row.get(QUERY_FIELD) or 0),
            web_lookups=int(row.get(WEB_LOOKUP_FIELD) or 0),
        )

    async def check_query_quota(self, user_id: str) -> UsageSnapshot:
        snapshot = await self.snapshot(user_id)
        if snapshot.query_count >= self.query_cap:
            raise QuotaExceeded(cap=self.query_cap, used=snapshot.query_count)
        return snapshot

    def web_lookup_allowed(self, snapshot: UsageSnapshot) -> bool:
        return snapshot.web_lookups < self.web_lookup_cap

    async def _increment(self, user_id: str, field: str) -> int | None:
        month = self.current_month()
        try:
            return await self.store.increment_usage_counter(user_id, month, field)
        except Exception:
            logger.exception("Usage counter increment failed for user=%s field=%s", user_id, field)
            return None

    async def record_query(self, user_id: str) -> int | None:
        return await self._increment(user_id, QUERY_FIELD)

    async def record_web_lookup(self, user_id: str) -> int | None:
        return await self._increment(user_id, WEB_LOOKUP_FIELD)
