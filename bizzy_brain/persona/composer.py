from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..prompts import persona as persona_text
from ..prompts import style as style_text
from .dials import PersonaDials, PersonaFlags, derive_dials
from .heuristics import (
    StructureSignals,
    choose_depth,
    choose_style,
    infer_structure,
    narrative_key,
    needs_structured_reasoning,
)


@dataclass(slots=True)
class PersonaComposition:
    """Ordered system messages for one turn plus the choices that produced them."""

    messages: list[dict[str, str]]
    dials: PersonaDials
    style: str
    depth: str
    intent: str
    module: str
    signals: StructureSignals = field(default_factory=StructureSignals)
    persona_version: str = persona_text.PERSONA_VERSION
    style_version: str = style_text.STYLE_CHAT_VERSION

    def summary(self) -> dict[str, Any]:
        return {
            "dials": self.dials.as_dict(),
            "style": self.style,
            "depth": self.depth,
            "persona_version": self.persona_version,
            "style_version": self.style_version,
        }


def build_persona_message(intent: str, module: str, dials: PersonaDials) -> str:
    posture = persona_text.module_posture_text(module)
    parts = [
        persona_text.IDENTITY_LINE,
        f"North star: {persona_text.NORTH_STAR}",
        f"Values: {'; '.join(persona_text.CORE_VALUES)}.",
        persona_text.VOICE_LINE,
        persona_text.dial_text("humor", dials.humor),
        persona_text.dial_text("energy", dials.energy),
        persona_text.dial_text("brevity", dials.brevity),
        persona_text.dial_text("optimism", dials.optimism),
        persona_text.BAD_NEWS_PROTOCOL,
        f"Module hints: {posture}" if posture else "",
        persona_text.intent_override_text(intent),
        persona_text.SIGNATURE_LINE,
        persona_text.DO_LINE,
        persona_text.DONT_LINE,
        persona_text.INVOICE_RULE,
        (
            f"Use home-service terms confidently: {', '.join(persona_text.DOMAIN_LEXICON)}. "
            "Define once on first use if non-obvious."
        ),
        f"(persona {persona_text.PERSONA_VERSION})",
    ]
    return " ".join(part for part in parts if part)


def _guidance_message(prompt: str, flags: PersonaFlags, signals: StructureSignals) -> str:
    key = "demo_punchy" if flags.demo_punchy else narrative_key(signals)
    lines = [persona_text.NARRATIVE_TEMPLATE.format(narrative=persona_text.narrative_hint(key))]
    lines.extend(persona_text.GUIDANCE_LINES)
    if needs_structured_reasoning(prompt):
        lines.append(persona_text.STRUCTURED_REASONING_HINT)
    if flags.demo_punchy:
        lines.append(persona_text.DEMO_PUNCHY_HINT)
    return " ".join(lines)


def _style_messages(style: str, intent: str, depth: str) -> list[str]:
    if style == "scaffolded":
        return [style_text.STYLE_GUIDE, style_text.template_for_intent(intent), style_text.depth_guide(depth)]
    return [style_text.STYLE_CHAT, style_text.depth_guide(depth)]


def compose_persona(
    *,
    intent: str = "general",
    module: str = "bizzy",
    prompt: str = "",
    flags: PersonaFlags | Mapping[str, Any] | None = None,
    depth: str | None = None,
    style: str | None = None,
) -> PersonaComposition:
    """Builds persona, guidance and style messages; the style messages always come last.

    The output depends only on the arguments, so identical turns get identical instructions.
    """
    resolved_intent = (intent or "general").strip().lower() or "general"
    resolved_module = (module or "bizzy").strip().lower() or "bizzy"
    resolved_flags = flags if isinstance(flags, PersonaFlags) else PersonaFlags.from_mapping(flags)

    dials = derive_dials(resolved_flags)
    signals = infer_structure(prompt)
    chosen_depth = choose_depth(resolved_flags, signals, depth)
    chosen_style = choose_style(resolved_intent, resolved_flags, signals, style)

    contents = [
        build_persona_message(resolved_intent, resolved_module, dials),
        _guidance_message(prompt, resolved_flags, signals),
        *_style_messages(chosen_style, resolved_intent, chosen_depth),
    ]
    return PersonaComposition(
        messages=[{"role": "system", "content": content} for content in contents if content],
        dials=dials,
        style=chosen_style,
        depth=chosen_depth,
        intent=resolved_intent,
        module=resolved_module,
        signals=signals,
        style_version=style_text.STYLE_VERSION if chosen_style == "scaffolded" else style_text.STYLE_CHAT_VERSION,
    )
