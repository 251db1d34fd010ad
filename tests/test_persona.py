from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bizzy_brain.persona import PersonaDials, PersonaFlags, compose_persona, derive_dials, infer_structure  # noqa: E402
from bizzy_brain.persona.heuristics import choose_depth, choose_style  # noqa: E402
from bizzy_brain.prompts import style as style_text  # noqa: E402
from bizzy_brain.prompts.persona import DEMO_PUNCHY_HINT  # noqa: E402


def test_default_dials() -> None:
    assert derive_dials(PersonaFlags()) == PersonaDials(humor=1, energy=2, brevity=2, optimism=2)


def test_bad_news_overrides_celebration() -> None:
    dials = derive_dials(PersonaFlags(bad_news=True, celebration=True))

    assert dials.humor == 0
    assert dials.optimism == 1
    assert dials.brevity == 3
    assert dials.energy == 3


def test_deep_dive_and_quick_set_brevity() -> None:
    assert derive_dials(PersonaFlags(deep_dive=True)).brevity == 1
    assert derive_dials(PersonaFlags(quick=True)).brevity == 3


def test_dials_are_clamped_to_ranges() -> None:
    clamped = PersonaDials(humor=9, energy=0, brevity=-2, optimism=7).clamped()
    assert clamped == PersonaDials(humor=3, energy=1, brevity=1, optimism=3)


def test_flags_accept_camel_case_keys() -> None:
    flags = PersonaFlags.from_mapping({"badNews": True, "deepDive": 1, "wantStructure": "yes"})
    assert flags.bad_news and flags.deep_dive and flags.want_structure


@pytest.mark.parametrize(
    ("prompt", "depth"),
    [
        ("tl;dr on cash please", "brief"),
        ("Give me a deep dive on pricing strategy", "comprehensive"),
        ("What is my margin?", "standard"),
    ],
)
def test_depth_follows_prompt_signals(prompt: str, depth: str) -> None:
    assert choose_depth(PersonaFlags(), infer_structure(prompt)) == depth


def test_explicit_depth_and_style_win() -> None:
    signals = infer_structure("tl;dr please")
    assert choose_depth(PersonaFlags(), signals, "max") == "max"
    assert choose_style("general", PersonaFlags(want_structure=True), signals, "chat") == "chat"
    assert choose_depth(PersonaFlags(), signals, "bogus") == "brief"


def test_step_requests_are_scaffolded() -> None:
    composition = compose_persona(intent="general", prompt="Walk me through the steps to send an invoice")

    assert composition.style == "scaffolded"
    assert composition.messages[-1]["content"] == style_text.depth_guide(composition.depth)
    assert style_text.STYLE_GUIDE in [message["content"] for message in composition.messages]
    assert composition.style_version == style_text.STYLE_VERSION


def test_chat_style_keeps_style_messages_last() -> None:
    composition = compose_persona(intent="general", module="bizzy", prompt="Hey, how are things?")
    contents = [message["content"] for message in composition.messages]

    assert composition.style == "chat"
    assert contents[-2:] == [style_text.STYLE_CHAT, style_text.depth_guide("standard")]
    assert all(message["role"] == "system" for message in composition.messages)


def test_persona_message_reflects_dials_and_module() -> None:
    composition = compose_persona(intent="fin_overview", module="financials", prompt="How are we doing?", flags={"bad_news": True})
    persona_message = composition.messages[0]["content"]

    assert "No humor." in persona_message
    assert "Optimism: measured." in persona_message
    assert "Stance: operator-accountant." in persona_message
    assert composition.summary()["dials"] == {"humor": 0, "energy": 2, "brevity": 3, "optimism": 1}


def test_composition_is_deterministic() -> None:
    first = compose_persona(intent="general", prompt="Compare Jobber versus Housecall Pro", flags={"quick": True})
    second = compose_persona(intent="general", prompt="Compare Jobber versus Housecall Pro", flags={"quick": True})
    assert first.messages == second.messages


def test_demo_punchy_adds_demo_hint() -> None:
    composition = compose_persona(intent="general", prompt="Quick numbers?", flags={"demo_punchy": True})
    guidance = composition.messages[1]["content"]

    assert DEMO_PUNCHY_HINT in guidance
