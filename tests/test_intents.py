from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.intents import (  # noqa: E402
    AFFORDABILITY_INTENT,
    GENERAL_INTENT,
    SCHEDULING_INTENT,
    IntentResolution,
    IntentRouter,
    extract_expense_details,
    intent_to_module,
)


@pytest.mark.parametrize(
    ("intent", "module"),
    [
        ("email_reply", "email"),
        ("cash_runway", "financials"),
        ("tax_deadlines", "tax"),
        ("reviews_insights", "marketing"),
        ("rebalance_advice", "investments"),
        ("calendar_schedule", "calendar"),
        ("affordability_check", "bizzy"),
        ("", "bizzy"),
        (None, "bizzy"),
    ],
)
def test_intent_to_module_families(intent: str | None, module: str) -> None:
    assert intent_to_module(intent) == module


def test_affordability_phrase_reclassifies_and_extracts_entities() -> None:
    resolution = IntentRouter().classify("Can I afford to hire a new employee at $4,000 per month?")

    assert resolution.intent == AFFORDABILITY_INTENT
    assert resolution.reclassified is True
    assert resolution.hints == {"affordHint": True}
    assert resolution.entities["expenseName"] == "Hire new employee"
    assert resolution.entities["amount"] == 4000.0
    assert resolution.entities["frequency"] == "Monthly"


def test_scheduling_phrase_sets_schedule_hint() -> None:
    resolution = IntentRouter().classify("Please book a meeting with the roofing crew on Friday")

    assert resolution.intent == SCHEDULING_INTENT
    assert resolution.module == "calendar"
    assert resolution.is_scheduling
    assert resolution.hints == {"scheduleHint": True}


def test_affordability_wins_over_scheduling_when_both_match() -> None:
    resolution = IntentRouter().classify("Can we afford to schedule overtime every week?")
    assert resolution.intent == AFFORDABILITY_INTENT


def test_explicit_intent_skips_classifiers() -> None:
    resolution = IntentRouter().classify("Can I afford a truck?", explicit_intent="tax_overview")

    assert resolution.intent == "tax_overview"
    assert resolution.module == "tax"
    assert resolution.explicit is True
    assert resolution.entities == {}


def test_plain_message_is_general() -> None:
    resolution = IntentRouter().classify("How is the team doing?")
    assert resolution.intent == GENERAL_INTENT
    assert resolution.module == "bizzy"


def test_k_suffix_and_frequency_are_parsed() -> None:
    details = extract_expense_details("Should we spend 12k on a marketing push yearly?")
    assert details["expenseName"] == "Marketing campaign"
    assert details["amount"] == 12000.0
    assert details["frequency"] == "Yearly"
    assert details["notes"] == "Should we spend 12k on a marketing push yearly?"


def test_caller_parsed_input_wins_over_extracted_entities() -> None:
    resolution = IntentResolution(
        intent=AFFORDABILITY_INTENT,
        module="bizzy",
        entities={"amount": 100.0, "frequency": "Monthly"},
        hints={"affordHint": True},
    )
    merged = resolution.fold_into({"amount": 250.0})

    assert merged == {"amount": 250.0, "frequency": "Monthly", "affordHint": True}


def test_failing_classifier_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    def _broken(message: str) -> IntentResolution | None:
        raise RuntimeError("boom")

    def _always(message: str) -> IntentResolution | None:
        return IntentResolution(intent="fin_overview", module="financials")

    router = IntentRouter(classifiers=(_broken, _always))
    with caplog.at_level(logging.ERROR, logger="bizzy_brain"):
        resolution = router.classify("anything")

    assert resolution.intent == "fin_overview"
    assert "Intent classifier _broken failed" in caplog.text
