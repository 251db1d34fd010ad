from __future__ import annotations

from typing import Any, Dict, List, Mapping

from ..common import format_pct, format_usd, sanitize_role
from ..context.bundle import ContextBundle
from ..persona import PersonaComposition, compose_persona
from ..prompts.context import context_lines, context_text, no_context_text
from ..web_lookup import WebLookupOutcome

MAX_HISTORY_CHARS = 4000
MOVES_PREVIEW = 3
FORECAST_PREVIEW = 3


def _signed_usd(value: float) -> str:
    return f"-{format_usd(abs(value))}" if value < 0 else f"+{format_usd(value)}"


def _signed_pct(value: float) -> str:
    return f"{'-' if value < 0 else '+'}{abs(round(value, 1)):g}%"


def _no_context_message(bundle: ContextBundle, web: WebLookupOutcome) -> str:
    parts = [
        no_context_text("identity"),
        no_context_text("general_knowledge"),
        no_context_text("data_behavior"),
    ]
    if bundle.schedule_hint:
        parts.append(no_context_text("schedule_hint"))
    if bundle.afford_hint:
        parts.append(no_context_text("afford_hint"))
    if web.context:
        parts.append(f"{no_context_text('web_context')}\n{web.context}")
    if web.wanted and web.limit_reached:
        parts.append(no_context_text("web_limit"))
    if not web.context and web.wanted and (web.limit_reached or web.not_configured):
        parts.append(no_context_text("web_unavailable"))
    return " ".join(part for part in parts if part)


def _snapshot_lines(profile: Mapping[str, Any] | None) -> List[str]:
    if not profile:
        return [context_text("no_profile")]
    lines = []
    for label, key in (("Business", "name"), ("Industry", "industry"), ("Location", "location"), ("Team Size", "team_size")):
        value = profile.get(key)
        if value not in (None, ""):
            lines.append(f"- {label}: {value}")
    return lines or [context_text("no_profile")]


def _metric_lines(bundle: ContextBundle) -> List[str]:
    if not bundle.kpis:
        return []
    latest = bundle.kpis[0]
    lines = [
        f"- Revenue (latest): {format_usd(latest.get('total_revenue'))}",
        f"- Expenses (latest): {format_usd(latest.get('total_expenses'))}",
        f"- Net Profit (latest): {format_usd(latest.get('net_profit'))}",
        f"- Profit Margin (latest): {format_pct(latest.get('profit_margin'))}",
    ]
    if latest.get("top_spending_category"):
        lines.append(f"- Top spending category: {latest['top_spending_category']}")
    if bundle.deltas.net_profit is not None:
        lines.append(f"- Δ Net Profit vs prior: {_signed_usd(bundle.deltas.net_profit)}")
    if bundle.deltas.margin_pts is not None:
        lines.append(f"- Δ Margin vs prior: {_signed_pct(bundle.deltas.margin_pts)}")
    return lines


def _forecast_lines(forecast: List[Dict[str, Any]]) -> List[str]:
    return [
        (
            f"- {point.get('month') or 'n/a'}: Net {format_usd(point.get('net_cash'))} • "
            f"In {format_usd(point.get('cash_in'))} / Out {format_usd(point.get('cash_out'))}"
        )
        for point in forecast[:FORECAST_PREVIEW]
    ]


def _task_hint_lines(bundle: ContextBundle) -> List[str]:
    lines: List[str] = []
    if bundle.schedule_hint:
        lines.extend(context_lines("schedule_hint_lines"))
    if bundle.afford_hint:
        lines.append(context_text("afford_hint"))
    if bundle.metric_hint or bundle.period_hint:
        hints = " • ".join(
            part
            for part in (
                f"metric: {bundle.metric_hint}" if bundle.metric_hint else "",
                f"period: {bundle.period_hint}" if bundle.period_hint else "",
            )
            if part
        )
        lines.append(context_text("kpi_hint_template").format(hints=hints))
    return lines


def _with_context_message(bundle: ContextBundle, web: WebLookupOutcome, *, demo_mode: bool) -> str:
    header = "\n".join(part for part in (context_text("identity"), context_text("mission")) if part)
    sections: List[str] = []
    if bundle.memory_context:
        sections.append(f"### Conversation Memory\n{bundle.memory_context}")
    sections.append("### Business Snapshot\n" + "\n".join(_snapshot_lines(bundle.profile)))

    metrics = _metric_lines(bundle)
    if metrics:
        sections.append("### Latest Metrics\n" + "\n".join(metrics))
    if bundle.moves:
        moves = [f"- {move.get('title') or ''}: {move.get('rationale') or ''}" for move in bundle.moves[:MOVES_PREVIEW]]
        sections.append("### Suggested Financial Moves\n" + "\n".join(moves))
    if bundle.forecast:
        sections.append("### Forecast Preview\n" + "\n".join(_forecast_lines(bundle.forecast)))
    if bundle.recent_chat:
        sections.append(f"> {context_text('recent_chat_hint')}")
    if web.context:
        sections.append(f"### Web Context\n{context_text('web_context')}\n{web.context}")
    elif web.unavailable:
        sections.append(f"### Web Context\n{context_text('web_limit')}")

    hints = _task_hint_lines(bundle)
    if hints:
        sections.append("### Task Hints\n" + "\n".join(hints))
    sections.append("### Data Discipline\n" + " ".join(context_lines("data_rules")))
    sections.append("### Differentiation\n" + context_text("differentiation"))
    sections.append("### Action Variety\n" + "\n".join(context_lines("action_variety")))
    sections.append("### Snapshot Format (when requested)\n" + "\n".join(context_lines("snapshot_format")))
    if demo_mode and bundle.demo_snapshot is not None:
        sections.append("### Demo Voice & Framing\n" + "\n".join(context_lines("demo_voice")))
    return header + "\n\n" + "\n\n".join(section for section in sections if section)


def build_context_message(bundle: ContextBundle, web: WebLookupOutcome, *, demo_mode: bool = False) -> str:
    """The first system message: business context when any exists, else a general-knowledge framing."""
    if bundle.has_context:
        return _with_context_message(bundle, web, demo_mode=demo_mode)
    return _no_context_message(bundle, web)


def format_history(recent_chat: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Newest-first window to chronological chat messages with sanitized roles."""
    history: List[Dict[str, str]] = []
    for item in reversed(recent_chat):
        content = str(item.get("content") or "")[:MAX_HISTORY_CHARS]
        if content:
            history.append({"role": sanitize_role(item.get("role")), "content": content})
    return history


def persona_flags(bundle: ContextBundle, *, demo_mode: bool) -> Dict[str, Any]:
    flags = dict(bundle.parsed_input.get("personaFlags") or {})
    if demo_mode:
        flags["demo_punchy"] = True
        flags.setdefault("want_structure", True)
    return flags


def compose_messages(
    *,
    message: str,
    intent: str,
    module: str,
    bundle: ContextBundle,
    web: WebLookupOutcome,
    demo_mode: bool = False,
) -> tuple[List[Dict[str, str]], PersonaComposition]:
    """Full ordered message list for the single language-model call of a turn."""
    persona = compose_persona(
        intent=intent,
        module=module,
        prompt=message,
        flags=persona_flags(bundle, demo_mode=demo_mode),
        depth=str(bundle.parsed_input.get("depth") or ""),
        style=str(bundle.parsed_input.get("style") or ""),
    )
    messages: List[Dict[str, str]] = [
        {"role": "system", "content": build_context_message(bundle, web, demo_mode=demo_mode)},
        *persona.messages,
    ]

    tone = bundle.onboarding.tone_block()
    if tone:
        messages.append({"role": "system", "content": tone})
    guide = bundle.onboarding.guide()
    if guide:
        messages.append({"role": "system", "content": guide})

    messages.extend(format_history(bundle.recent_chat))
    messages.append({"role": "user", "content": message})
    return messages, persona
