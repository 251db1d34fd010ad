from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping

from ..cache import TTLCache
from ..common import as_optional_float, clip, collapse_spaces, format_pct, format_usd, sanitize_role
from ..memory.vector_memory import MemoryHit, VectorMemory
from ..prompts.context import memory_text
from .bundle import ContextBundle, KpiDeltas
from .demo import apply_demo, demo_snapshot_block, load_demo_snapshot
from .onboarding import resolve_onboarding

logger = logging.getLogger("bizzy_brain")

KPI_LIMIT = 3
FORECAST_LIMIT = 6
MOVES_LIMIT = 3


def _caller_rows(parsed_input: Mapping[str, Any], key: str) -> List[Dict[str, Any]]:
    value = parsed_input.get(key)
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, dict)]


def compute_kpi_deltas(kpis: List[Dict[str, Any]]) -> KpiDeltas:
    """Differences between the two newest snapshots (newest first)."""
    if len(kpis) < 2:
        return KpiDeltas()
    latest, prior = kpis[0], kpis[1]

    def diff(key: str) -> float | None:
        current = as_optional_float(latest.get(key))
        previous = as_optional_float(prior.get(key))
        if current is None or previous is None:
            return None
        return round(current - previous, 2)

    return KpiDeltas(
        net_profit=diff("net_profit"),
        revenue=diff("total_revenue"),
        expenses=diff("total_expenses"),
        margin_pts=diff("profit_margin"),
    )


def compress_recent_chat(
    messages: List[Dict[str, Any]],
    *,
    verbatim: int,
    summary_chars: int,
) -> tuple[List[Dict[str, str]], str]:
    """Splits a newest-first window into verbatim turns and a one-line summary of older ones."""
    recent = [
        {"role": str(item.get("role") or ""), "content": str(item.get("content") or "")}
        for item in messages[:verbatim]
    ]
    older = messages[verbatim:]
    if not older:
        return recent, ""

    cleaned: List[str] = []
    for item in reversed(older):
        text = collapse_spaces(str(item.get("content") or ""))
        if text:
            cleaned.append(f"{sanitize_role(item.get('role'))}: {text}")
    return recent, clip(" • ".join(cleaned), summary_chars)


def build_memory_context(bundle: ContextBundle) -> str:
    sections: List[str] = []
    if bundle.memory_hits:
        header = memory_text("past_conversations_header")
        sections.append("\n".join([header, *(hit.summary for hit in bundle.memory_hits)]))
    if bundle.recent_summary:
        sections.append(memory_text("recent_summary_template").format(summary=bundle.recent_summary))
    if bundle.kpis:
        latest = bundle.kpis[0]
        sections.append(
            memory_text("financial_summary_template").format(
                revenue=format_usd(latest.get("total_revenue")),
                expenses=format_usd(latest.get("total_expenses")),
                net_profit=format_usd(latest.get("net_profit")),
                margin=format_pct(latest.get("profit_margin")),
                top_spend=latest.get("top_spending_category") or "n/a",
            )
        )
    if bundle.moves:
        lines = [f"- {move.get('title') or ''}: {move.get('rationale') or ''}" for move in bundle.moves]
        sections.append("\n".join([memory_text("moves_header"), *lines]))
    if bundle.demo_snapshot is not None:
        sections.append(demo_snapshot_block(bundle.demo_snapshot))
    return "\n\n".join(sections)


class ContextAssembler:
    """Builds the per-turn ``ContextBundle``.

    Every source is optional: a failed read is logged and treated as empty so the
    turn can still be answered. Business reads go through the shared ``TTLCache``.
    """

    def __init__(
        self,
        store: Any,
        memory: VectorMemory | None,
        *,
        cache: TTLCache | None = None,
        recent_chat_limit: int = 12,
        recent_verbatim: int = 6,
        summary_chars: int = 600,
        demo_mode: bool = False,
        demo_data_path: Path | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.memory = memory
        self.cache = cache or TTLCache(ttl_seconds=0)
        self.recent_chat_limit = max(1, int(recent_chat_limit))
        self.recent_verbatim = max(1, min(int(recent_verbatim), self.recent_chat_limit))
        self.summary_chars = max(1, int(summary_chars))
        self.demo_mode = bool(demo_mode)
        self.demo_data_path = demo_data_path
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def _cached(self, kind: str, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        return await self.cache.get_or_load((kind, key), loader)

    async def _resolve_profile(self, user_id: str, business_id: str | None) -> Dict[str, Any] | None:
        cache_key = business_id or f"user:{user_id}"
        try:
            return await self._cached(
                "profile",
                cache_key,
                lambda: self.store.get_business_profile(business_id=business_id, user_id=user_id),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[context] business profile lookup failed user=%s: %s", user_id, exc)
            return None

    async def _empty_list(self) -> List[Dict[str, Any]]:
        return []

    async def _false(self) -> bool:
        return False

    async def _no_hits(self) -> List[MemoryHit]:
        return []

    async def assemble(
        self,
        *,
        user_id: str,
        message: str,
        business_id: str | None = None,
        thread_id: str | None = None,
        parsed_input: Mapping[str, Any] | None = None,
        memory_tags: Iterable[str] | None = None,
    ) -> ContextBundle:
        caller = dict(parsed_input or {})
        caller_profile = caller.get("businessProfile")
        profile: Dict[str, Any] | None
        if isinstance(caller_profile, dict) and caller_profile:
            profile = dict(caller_profile)
        else:
            profile = await self._resolve_profile(user_id, business_id)
        resolved_business_id = business_id or (str(profile["business_id"]) if profile and profile.get("business_id") else None)

        bundle = ContextBundle(user_id=user_id, business_id=resolved_business_id, profile=profile, parsed_input=caller)
        bundle.kpis = _caller_rows(caller, "kpis")
        bundle.forecast = _caller_rows(caller, "forecast")
        bundle.moves = _caller_rows(caller, "moves")
        caller_chat = _caller_rows(caller, "recentChat")

        bid = resolved_business_id
        sources: Dict[str, Awaitable[Any]] = {
            "kpis": (
                self._cached("kpis", bid, lambda: self.store.list_kpi_snapshots(bid, KPI_LIMIT))
                if bid and not bundle.kpis
                else self._empty_list()
            ),
            "forecast": (
                self._cached("forecast", bid, lambda: self.store.list_forecast_points(bid, FORECAST_LIMIT))
                if bid and not bundle.forecast
                else self._empty_list()
            ),
            "moves": (
                self._cached("moves", bid, lambda: self.store.list_suggested_moves(bid, MOVES_LIMIT))
                if bid and not bundle.moves
                else self._empty_list()
            ),
            "accounting": (
                self._cached("accounting", bid, lambda: self.store.has_accounting_connection(bid))
                if bid
                else self._false()
            ),
            "recent_chat": (
                self.store.list_recent_messages(thread_id, self.recent_chat_limit)
                if thread_id and not caller_chat
                else self._empty_list()
            ),
            "memories": (
                self.memory.retrieve_memories(user_id, message, tags=memory_tags)
                if self.memory is not None
                else self._no_hits()
            ),
        }
        names = list(sources)
        results = await asyncio.gather(*sources.values(), return_exceptions=True)
        fetched: Dict[str, Any] = {}
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("[context] %s fetch failed user=%s: %s", name, user_id, result)
                fetched[name] = None
            else:
                fetched[name] = result

        if not bundle.kpis:
            bundle.kpis = list(fetched["kpis"] or [])
        if not bundle.forecast:
            bundle.forecast = list(fetched["forecast"] or [])
        if not bundle.moves:
            bundle.moves = list(fetched["moves"] or [])
        bundle.accounting_connected = bool(fetched["accounting"])
        bundle.memory_hits = list(fetched["memories"] or [])
        bundle.deltas = compute_kpi_deltas(bundle.kpis)

        if caller_chat:
            bundle.recent_chat = [
                {"role": str(item.get("role") or ""), "content": str(item.get("content") or "")} for item in caller_chat
            ]
        else:
            bundle.recent_chat, bundle.recent_summary = compress_recent_chat(
                list(fetched["recent_chat"] or []),
                verbatim=self.recent_verbatim,
                summary_chars=self.summary_chars,
            )

        bundle.onboarding = resolve_onboarding(
            message,
            profile,
            accounting_connected=bundle.accounting_connected,
            hint_id=caller.get("onboardingPromptId"),
        )

        if self.demo_mode and self.demo_data_path is not None:
            snapshot = await asyncio.to_thread(load_demo_snapshot, self.demo_data_path)
            if snapshot is not None:
                apply_demo(bundle, snapshot, self._now().strftime("%Y-%m"))

        bundle.memory_context = build_memory_context(bundle)
        logger.debug(
            "[context] assembled user=%s business=%s keys=%s",
            user_id,
            resolved_business_id,
            ",".join(bundle.context_keys()),
        )
        return bundle
