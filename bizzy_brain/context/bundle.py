from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..memory.vector_memory import MemoryHit
from .onboarding import OnboardingState


@dataclass(slots=True)
class KpiDeltas:
    net_profit: float | None = None
    revenue: float | None = None
    expenses: float | None = None
    margin_pts: float | None = None

    @property
    def empty(self) -> bool:
        return all(value is None for value in (self.net_profit, self.revenue, self.expenses, self.margin_pts))


@dataclass(slots=True)
class ContextBundle:
    """Per-turn business and conversation context. Never persisted."""

    user_id: str
    business_id: str | None = None
    profile: Dict[str, Any] | None = None
    kpis: List[Dict[str, Any]] = field(default_factory=list)
    forecast: List[Dict[str, Any]] = field(default_factory=list)
    moves: List[Dict[str, Any]] = field(default_factory=list)
    deltas: KpiDeltas = field(default_factory=KpiDeltas)
    accounting_connected: bool = False
    recent_chat: List[Dict[str, str]] = field(default_factory=list)
    recent_summary: str = ""
    memory_hits: List[MemoryHit] = field(default_factory=list)
    memory_context: str = ""
    onboarding: OnboardingState = field(default_factory=OnboardingState)
    demo_snapshot: Dict[str, Any] | None = None
    parsed_input: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_context(self) -> bool:
        return bool(self.profile or self.kpis or self.forecast or self.moves or self.demo_snapshot)

    @property
    def schedule_hint(self) -> bool:
        return bool(self.parsed_input.get("scheduleHint"))

    @property
    def afford_hint(self) -> bool:
        return bool(self.parsed_input.get("affordHint"))

    @property
    def metric_hint(self) -> str:
        return str(self.parsed_input.get("metricHint") or "")

    @property
    def period_hint(self) -> str:
        return str(self.parsed_input.get("periodHint") or "")

    def context_keys(self) -> List[str]:
        keys = set(self.parsed_input)
        for name, present in (
            ("businessProfile", self.profile is not None),
            ("kpis", bool(self.kpis)),
            ("forecast", bool(self.forecast)),
            ("moves", bool(self.moves)),
            ("recentChat", bool(self.recent_chat)),
            ("recentChatSummary", bool(self.recent_summary)),
            ("memories", bool(self.memory_hits)),
            ("onboardingChecklist", bool(self.onboarding.checklist)),
            ("demoSnapshot", self.demo_snapshot is not None),
        ):
            if present:
                keys.add(name)
        return sorted(keys)

    def kpi_snapshot(self) -> Dict[str, Any] | None:
        """Compact KPI snapshot stored alongside a memory record."""
        if not self.kpis:
            return None
        latest = self.kpis[0]
        top = latest.get("top_spending_category")
        return {
            "revenue_ytd": latest.get("total_revenue") or 0,
            "margin_pct": latest.get("profit_margin") or 0,
            "top_expense_categories": [str(top)] if top else [],
        }
