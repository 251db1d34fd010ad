from __future__ import annotations

import re
from dataclasses import dataclass

from .dials import PersonaFlags

STRUCTURAL_INTENTS = frozenset({"procedure", "decision_brief", "kpi_compare"})
DEPTHS = ("brief", "standard", "deep", "comprehensive", "max")
STYLES = ("chat", "scaffolded")

_THOROUGH_RE = re.compile(
    r"\b(best ways|strateg(y|ies)|guide|playbook|deep dive|comprehensive|in depth|how to|ideas|tactics|"
    r"framework|step by step|explain|thoughts)\b"
)
_WHY_RE = re.compile(r"\b(why|reason|because|rationale|tradeoff|trade-off)\b")
_HOW_RE = re.compile(r"\bhow\b")
_COMPARE_RE = re.compile(r"\b(compare|versus|vs\.?|pros and cons|tradeoff|trade-off|which should i choose)(?=\W|$)")
_STEPS_RE = re.compile(r"\b(step|steps|checklist|how do i|procedure|walk me through|process)\b")
_TABLE_RE = re.compile(r"\b(table|tabulate|matrix|grid|columns)\b")
_BRIEF_RE = re.compile(r"(\btl;dr|\bshort version\b|\bbrief\b|\bsummary only\b|\bone line\b|\bone-liner\b)")
_REASONING_RE = re.compile(
    r"\b(risks?|advantages?|pros|cons|benefits?|issues?|problems?|causes?|effects?|impact|analysis|breakdown|"
    r"explain|thoughts|opinion|future|plan)\b"
)
_LONG_QUERY_WORDS = 10


@dataclass(frozen=True, slots=True)
class StructureSignals:
    wants_steps: bool = False
    wants_compare: bool = False
    wants_table: bool = False
    wants_brief: bool = False
    wants_thorough: bool = False
    asks_why: bool = False
    asks_how: bool = False

    @property
    def wants_scaffold(self) -> bool:
        return self.wants_steps or self.wants_compare or self.wants_table


def infer_structure(prompt: str) -> StructureSignals:
    text = (prompt or "").lower()
    return StructureSignals(
        wants_steps=bool(_STEPS_RE.search(text)),
        wants_compare=bool(_COMPARE_RE.search(text)),
        wants_table=bool(_TABLE_RE.search(text)),
        wants_brief=bool(_BRIEF_RE.search(text)),
        wants_thorough=bool(_THOROUGH_RE.search(text)),
        asks_why=bool(_WHY_RE.search(text)),
        asks_how=bool(_HOW_RE.search(text)),
    )


def narrative_key(signals: StructureSignals) -> str:
    if signals.wants_brief:
        return "direct_answer"
    if signals.wants_steps:
        return "numbered_steps"
    if signals.wants_compare or signals.wants_table:
        return "contrast_brief"
    if signals.asks_why:
        return "reasoning"
    if signals.asks_how:
        return "example_led"
    return "default"


def needs_structured_reasoning(prompt: str) -> bool:
    text = (prompt or "").lower()
    if _REASONING_RE.search(text):
        return True
    return len(text.split()) > _LONG_QUERY_WORDS


def choose_depth(flags: PersonaFlags, signals: StructureSignals, explicit: str | None = None) -> str:
    requested = (explicit or "").strip().lower()
    if requested in DEPTHS:
        return requested
    if flags.quick or signals.wants_brief:
        return "brief"
    if flags.deep_dive or signals.wants_thorough:
        return "comprehensive"
    return "standard"


def choose_style(intent: str, flags: PersonaFlags, signals: StructureSignals, explicit: str | None = None) -> str:
    requested = (explicit or "").strip().lower()
    if requested in STYLES:
        return requested
    if flags.want_structure or signals.wants_scaffold or intent in STRUCTURAL_INTENTS:
        return "scaffolded"
    return "chat"
