from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("bizzy_brain")

GENERAL_INTENT = "general"
AFFORDABILITY_INTENT = "affordability_check"
SCHEDULING_INTENT = "calendar_schedule"

EMAIL_INTENTS = frozenset(
    {
        "email_summarize",
        "email_reply",
        "email_template",
        "email_search",
        "email_extract_tasks",
        "email_followup",
        "email_find_contact",
    }
)
FINANCE_INTENTS = frozenset(
    {
        "fin_variance_explain",
        "forecast_generate",
        "cash_runway",
        "invoice_status",
        "expense_spike",
        "job_profitability",
        "pricing_strategy",
        "fin_overview",
    }
)
TAX_INTENTS = frozenset(
    {"tax_liability_estimate", "tax_deadlines", "tax_deductions_find", "tax_move_explain", "tax_overview"}
)
MARKETING_INTENTS = frozenset({"content_generate", "reviews_insights", "review_request_flow", "mkt_overview"})
INVESTMENT_INTENTS = frozenset({"retirement_projection", "contribution_limit", "rebalance_advice", "inv_overview"})
OPS_INTENTS = frozenset({"job_status", "lead_followup", "agenda_range", SCHEDULING_INTENT})

_MODULE_BY_FAMILY: tuple[tuple[frozenset[str], str], ...] = (
    (EMAIL_INTENTS, "email"),
    (FINANCE_INTENTS, "financials"),
    (TAX_INTENTS, "tax"),
    (MARKETING_INTENTS, "marketing"),
    (INVESTMENT_INTENTS, "investments"),
    (OPS_INTENTS, "calendar"),
)


def intent_to_module(intent: str | None) -> str:
    key = str(intent or "").strip()
    for family, module in _MODULE_BY_FAMILY:
        if key in family:
            return module
    return "bizzy"


_AFFORDABILITY_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"can i afford",
        r"can we afford",
        r"should i spend",
        r"should we spend",
        r"is it (okay|safe) to",
        r"can i pay for",
        r"can we hire",
        r"can i hire",
        r"do i have enough",
        r"would it be smart to",
        r"can i budget for",
    )
)

_SCHEDULING_TRIGGERS = ("schedule", "set a reminder", "book a meeting", "add to calendar")

_EXPENSE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("hire", "employee"), "Hire new employee"),
    (("truck",), "Buy new truck"),
    (("crm",), "CRM software upgrade"),
    (("marketing",), "Marketing campaign"),
    (("office",), "New office lease"),
)

_AMOUNT_RE = re.compile(
    r"\$?\s?(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)\s?(k\b)?",
    re.IGNORECASE,
)

_FREQUENCY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(/\s?mo(nth)?\b|per month|a month|monthly|each month|every month)", re.IGNORECASE), "Monthly"),
    (re.compile(r"(/\s?w(ee)?k\b|per week|a week|weekly|every week)", re.IGNORECASE), "Weekly"),
    (re.compile(r"(/\s?y(ea)?r\b|per year|a year|annually|yearly|every year)", re.IGNORECASE), "Yearly"),
)


def detect_affordability(message: str) -> bool:
    return any(pattern.search(message or "") for pattern in _AFFORDABILITY_PATTERNS)


def detect_scheduling(message: str) -> bool:
    lowered = (message or "").lower()
    return any(trigger in lowered for trigger in _SCHEDULING_TRIGGERS)


def extract_expense_details(message: str) -> dict[str, Any]:
    text = message or ""
    lowered = text.lower()

    expense_name = "Unnamed Expense"
    for keywords, label in _EXPENSE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            expense_name = label
            break

    amount: float | None = None
    match = _AMOUNT_RE.search(text)
    if match:
        amount = float(match.group(1).replace(",", ""))
        if match.group(2):
            amount *= 1000

    frequency = "One-time"
    for pattern, label in _FREQUENCY_PATTERNS:
        if pattern.search(text):
            frequency = label
            break

    return {
        "expenseName": expense_name,
        "amount": amount,
        "frequency": frequency,
        "startDate": None,
        "notes": text,
    }


@dataclass(slots=True)
class IntentResolution:
    intent: str
    module: str
    explicit: bool = False
    reclassified: bool = False
    entities: dict[str, Any] = field(default_factory=dict)
    hints: dict[str, bool] = field(default_factory=dict)

    @property
    def is_scheduling(self) -> bool:
        return self.intent == SCHEDULING_INTENT

    def fold_into(self, parsed_input: dict[str, Any] | None) -> dict[str, Any]:
        """Returns a copy of the caller bundle with entities and hints merged in.

        Caller-supplied keys win over extracted ones.
        """
        merged: dict[str, Any] = dict(self.entities)
        merged.update(self.hints)
        merged.update(parsed_input or {})
        return merged


Classifier = Callable[[str], "IntentResolution | None"]


def _classify_affordability(message: str) -> IntentResolution | None:
    if not detect_affordability(message):
        return None
    return IntentResolution(
        intent=AFFORDABILITY_INTENT,
        module=intent_to_module(AFFORDABILITY_INTENT),
        reclassified=True,
        entities=extract_expense_details(message),
        hints={"affordHint": True},
    )


def _classify_scheduling(message: str) -> IntentResolution | None:
    if not detect_scheduling(message):
        return None
    return IntentResolution(
        intent=SCHEDULING_INTENT,
        module=intent_to_module(SCHEDULING_INTENT),
        reclassified=True,
        hints={"scheduleHint": True},
    )


class IntentRouter:
    """First phase of a turn: resolves the intent once, before any quota or context work."""

    def __init__(self, classifiers: tuple[Classifier, ...] | None = None) -> None:
        self.classifiers: tuple[Classifier, ...] = classifiers or (
            _classify_affordability,
            _classify_scheduling,
        )

    def classify(self, message: str, explicit_intent: str | None = None) -> IntentResolution:
        forced = str(explicit_intent or "").strip()
        if forced:
            return IntentResolution(intent=forced, module=intent_to_module(forced), explicit=True)

        for classifier in self.classifiers:
            try:
                resolution = classifier(message)
            except Exception:
                logger.exception("Intent classifier %s failed", getattr(classifier, "__name__", classifier))
                continue
            if resolution is not None:
                return resolution

        return IntentResolution(intent=GENERAL_INTENT, module=intent_to_module(GENERAL_INTENT))
