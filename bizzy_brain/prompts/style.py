from __future__ import annotations

from typing import Any

from .json_loader import load_prompt_json

STYLE_VERSION = "v2.0.0"
STYLE_CHAT_VERSION = "v1.0.0"

_DEFAULTS: dict[str, Any] = {
    "style_chat": (
        "Chat formatting rules (enforce strictly):\n"
        "- Write in short paragraphs (2–4 sentences). Use clean Markdown.\n"
        "- Do NOT add headings or bold labels unless the user explicitly asks.\n"
        "- Never use boilerplate headers like \"Summary\", \"Details\", or \"Next steps\". If structure is "
        "needed, use short, topic-specific labels only when they clearly help.\n"
        "- Use a bullet list only when listing 3+ items or when the user asks for steps; keep each item to "
        "one short line.\n"
        "- If the user asks for steps, use a numbered list (max 5), one concise line per step.\n"
        "- Avoid filler like \"Here is a summary\". Prefer active voice, concrete verbs, and specific "
        "recommendations.\n"
        "- No emojis. No ALL CAPS emphasis. Keep tone pragmatic and clear.\n"
        "- If asked for a \"short version\", keep to ≤5 lines."
    ),
    "style_guide": (
        "You are **Bizzi** — a pragmatic, emotionally intelligent AI cofounder and companion\n"
        "for home-service and construction founders.\n\n"
        "**Formatting rules (enforce strictly):**\n"
        "Write in short paragraphs (2–4 sentences). Use clean Markdown. It's OK to use many short "
        "paragraphs for thorough answers.\n"
        "- Do NOT add headings or bold labels unless the user explicitly asks.\n"
        "- Prefer paragraphs over lists. Only use bullets if the user asks for a list/steps or if bullets "
        "clearly improve scanning; keep bullets ≤5 items.\n"
        "- If the user asks for steps, use a numbered list (max 5), one concise line per step.\n"
        "- Avoid filler openings/closings (“Here is…”, “In conclusion…”). Get to the point.\n"
        "- No emojis. No ALL-CAPS emphasis. Keep tone direct, specific, and helpful.\n"
        "- If data is missing, ask ≤2 clarifying questions at the end in one short line."
    ),
    "depth_presets": {
        "brief": "≤120 words. One tight paragraph or 3 bullets max if requested.",
        "standard": "~200–400 words across multiple short paragraphs; bullets only when helpful.",
        "deep": "~400–800 words. Multiple short paragraphs; use bullets/tables when they improve clarity.",
        "comprehensive": (
            "~800–1,400 words. Teach/guide level detail with examples. Keep paragraphs short; use "
            "bullets/tables sparingly to aid scanning."
        ),
        "max": (
            "Up to ~1,800 words if the question explicitly asks for a full guide/playbook. Keep it "
            "skimmable with short paragraphs and occasional lists."
        ),
    },
    "templates": {
        "general": "### Summary\n<one-line>\n\n### Details\n- <key point 1>\n- <key point 2>\n\n"
        "### Next steps\n1. <action 1>\n2. <action 2>",
        "analysis": "### Summary\n<one-line takeaway>\n\n### Key drivers\n- <driver 1>\n- <driver 2>\n\n"
        "### Risks & mitigations\n- **Risk:** <risk> — **Mitigation:** <mitigation>\n\n"
        "### Next steps\n1. <action 1>\n2. <action 2>",
        "procedure": "### Summary\n<what we’re doing in one line>\n\n### Steps\n1. <step 1>\n2. <step 2>\n"
        "3. <step 3>\n\n**Tips**\n- <tip 1>\n- <tip 2>",
        "decision_brief": "### Recommendation\n<one-line recommendation>\n\n### Options table\n"
        "| Option | Pros | Cons | When to choose |\n|---|---|---|---|\n"
        "| <A> | <pros> | <cons> | <context> |\n| <B> | <pros> | <cons> | <context> |\n\n"
        "### Rationale\n- <why this choice fits>\n\n### Next steps\n1. <action 1>\n2. <action 2>",
        "insight": "**TL;DR:** <one-sentence takeaway>\n\n**Why it matters**\n- <impact 1>\n- <impact 2>\n\n"
        "**Drivers / Evidence**\n- <driver or datapoint 1>\n- <driver or datapoint 2>\n\n"
        "**Actions**\n1. <most leveraged action>\n2. <second action>",
        "affordability_check": "**Verdict:** <Yes/No/Depends> — <one-line justification>\n\n"
        "**Cash flow impact**\n- <near-term impact>\n- <risk or timing consideration>\n\n"
        "### Next steps\n1. <action 1>\n2. <action 2>",
        "calendar_schedule": "**Scheduled:** <title> — <date/time>\n\n**Details**\n"
        "- Type: <meeting/job/deadline>\n- When: <start → end>\n- Where: <location or online>\n\n"
        "### Next steps\n1. <confirm/prepare step>\n2. <optional follow-up>",
        "kpi_compare": "**TL;DR:** <who's up/down and why in one line>\n\n**Comparison**\n"
        "- <metric A: last vs current>\n- <metric B: last vs current>\n\n**Drivers**\n- <driver 1>\n"
        "- <driver 2>\n\n### Next steps\n1. <improvement>\n2. <monitoring>",
        "tax_help": "### Summary\n<deadline or rule in one sentence>\n\n### What to do\n- <prep or doc>\n"
        "- <thresholds to note>\n\n### Next steps\n1. <file/estimate/pay>\n2. <set reminder>",
        "marketing_tip": "### Angle to try\n- <hook or theme>\n\n### Example copy\n- <1–2 lines of example>\n\n"
        "### Next steps\n1. <create asset / schedule>\n2. <measure result>",
    },
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("style.json", _DEFAULTS)


_CFG = _cfg()

STYLE_CHAT = str(_CFG.get("style_chat") or _DEFAULTS["style_chat"]).strip()
STYLE_GUIDE = str(_CFG.get("style_guide") or _DEFAULTS["style_guide"]).strip()
DEPTH_PRESETS: dict[str, str] = {
    str(key): str(value).strip()
    for key, value in (_CFG.get("depth_presets") or _DEFAULTS["depth_presets"]).items()
}
TEMPLATES: dict[str, str] = {
    str(key): str(value).strip() for key, value in (_CFG.get("templates") or _DEFAULTS["templates"]).items()
}


def depth_guide(depth: str) -> str:
    return DEPTH_PRESETS.get(depth) or DEPTH_PRESETS.get("standard") or _DEFAULTS["depth_presets"]["standard"]


def template_for_intent(intent: str) -> str:
    return TEMPLATES.get((intent or "").strip().lower()) or TEMPLATES.get("general", "")
