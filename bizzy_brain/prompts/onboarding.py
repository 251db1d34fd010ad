from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .json_loader import load_prompt_json

logger = logging.getLogger("bizzy_brain.prompts")

_SYNC_ACTION = {"type": "navigate", "label": "Open Sync settings", "target": "/dashboard/settings?tab=Integrations"}
_CHECKLIST_ACTION = {"type": "show_checklist", "checklistId": "bizzy_onboarding"}

_DEFAULTS: dict[str, Any] = {
    "tone_lines": [
        "Global onboarding tone:",
        "- Sound like a calm, experienced cofounder who understands busy tradespeople.",
        "- Avoid jargon. Use short paragraphs, bullets, and concrete examples.",
        "- Offer to do the task with them (say \"Let's do it now together\") instead of only explaining.",
        (
            "- Never promise features that do not exist; if it is a roadmap idea, say \"over time we'll add...\" "
            "instead of guaranteeing it today."
        ),
        "- Keep the first turn tight: 3-4 short paragraphs or bullet sections.",
        "- After you answer, call out one clear next action and ask a yes/no follow-up question.",
    ],
    "topic_note_template": "You are currently answering the onboarding topic \"{title}\".",
    "checklist": [
        {"key": "business_profile", "label": "Business profile"},
        {"key": "quickbooks", "label": "QuickBooks"},
        {"key": "calendar", "label": "Calendar"},
        {"key": "email", "label": "Email"},
        {"key": "job_tool", "label": "Job tool"},
    ],
    "prompt_bank": [
        {
            "id": "setup_biz",
            "title": "Set up my business in Bizzi",
            "canonicalPrompt": "How do I set up my business in Bizzi?",
            "matchers": [
                r"how (do|should) i (set up|setup).*bizzi",
                r"set up my business.*bizzi",
                r"\bgetting started with bizzi\b",
            ],
            "response": (
                "Great question. Let's get Bizzi set up as your cofounder in a few quick steps:\n\n"
                "1. Fill in your business profile\n- Company name\n- What trade you are in (HVAC, roofing, "
                "remodeling, etc.)\n- Rough team size\n- Service area\nTell them this lets Bizzi talk like a real "
                "partner.\n\n"
                "2. Connect QuickBooks (if they use it)\n- Explain that Bizzi can then answer \"How did we do this "
                "month?\" and \"Where is our money going?\"\n\n"
                "3. Connect calendar and email\n- Mention staying ahead of jobs, walkthroughs, and follow-ups.\n\n"
                "4. Connect a job management tool (Jobber or Housecall Pro if they use one)\n- Then Bizzi can see "
                "their pipeline.\n\n"
                "Close by saying that once those are connected they can ask Bizzi anything in plain English based "
                "on real data and offer to walk through it right now."
            ),
            "followUps": [
                "What trade are you in?",
                "Roughly how many people are on your team?",
                "Do you already use QuickBooks Online?",
            ],
            "followUpPrompt": "Want me to walk you through setup while we are here? (yes or no)",
            "nextStep": "Offer to walk them through the checklist step by step.",
            "devNotes": [
                (
                    "Mention the checklist items (business profile, QuickBooks, calendar, email, job tool) with "
                    "their current status."
                ),
                "Use their answers to update the business profile whenever possible.",
            ],
            "suggestedActions": [_CHECKLIST_ACTION],
        },
        {
            "id": "sync_quickbooks",
            "title": "Sync QuickBooks and other accounts",
            "canonicalPrompt": "How do I sync QuickBooks and other accounts?",
            "matchers": [r"sync quickbooks", r"connect quickbooks", r"link quickbooks", r"connect other accounts"],
            "response": (
                "Syncing your accounts turns Bizzi from a chatbot into a real cofounder.\n\n"
                "1. Go to Settings -> Sync to see every integration in one place.\n\n"
                "2. Connect QuickBooks Online\n- Click \"Connect QuickBooks\"\n- Sign in with Intuit and pick the "
                "right company file\n- Explain that Bizzi can then see revenue, expenses, profit, top spend "
                "categories, and MoM trends.\n\n"
                "3. Connect other tools\n- Email & Calendar (Google) to help with follow-ups and events\n"
                "- Jobber / Housecall Pro to understand jobs and pipeline\n\n"
                "Emphasize QuickBooks is the most important starting point. Offer to open the Sync page right now."
            ),
            "followUps": ["Do you already use QuickBooks Online for this business?"],
            "followUpPrompt": "Should I open the Sync page for you now? (yes or no)",
            "nextStep": "If QuickBooks is not connected, invite them to click Connect QuickBooks and stay available.",
            "devNotes": [
                "If QuickBooks is not connected, call that out explicitly.",
                (
                    "If they say they do not use QuickBooks, reassure them Bizzi can still help with planning and "
                    "job flow."
                ),
            ],
            "suggestedActions": [_SYNC_ACTION],
        },
        {
            "id": "daily_use",
            "title": "Best way to use Bizzi day-to-day",
            "canonicalPrompt": "What's the best way to use Bizzi day-to-day?",
            "matchers": [r"best way to use bizzi", r"how to use bizzi (every|each) day", r"day[- ]to[- ]day bizzi"],
            "response": (
                "Encourage them to treat Bizzi like a cofounder they can text anytime.\n\n"
                "1. Morning check-in (2-3 minutes)\n- Ask \"What should I focus on today?\"\n- Ask \"Any jobs or "
                "invoices I'm forgetting?\"\n\n"
                "2. During the day\n- Drop ad-hoc tasks like drafting replies, summarizing jobs, or asking why "
                "profit is down.\n\n"
                "3. End-of-week review\n- Ask for a quick snapshot, what changed since last month, or the top "
                "three risks."
            ),
            "followUps": [
                "Do you spend more time in the field or in the office?",
                "Are you more worried about cash flow, your jobs pipeline, or admin overload right now?",
            ],
            "followUpPrompt": "Want me to suggest a simple Bizzi routine for you? (yes or no)",
            "nextStep": "Offer to tailor a simple Bizzi routine once they answer the quick questions.",
            "devNotes": ["Use their answers later to bias future nudges toward the area they care about most."],
            "suggestedActions": [],
        },
        {
            "id": "bizzi_value",
            "title": "How Bizzi helps run the business",
            "canonicalPrompt": "How does Bizzi help me run my business?",
            "matchers": [r"how does bizzi help", r"what does bizzi do", r"why should i use bizzi"],
            "response": (
                "Explain that Bizzi reduces mental load by giving visibility and acting as a thinking partner.\n\n"
                "- Visibility: quick snapshots of revenue, expenses, profit, and changes month-to-month.\n"
                "- Jobs & schedule clarity: summaries of upcoming jobs and nudges about follow-ups.\n"
                "- Thinking partner: compare options (\"buy vs lease\"), turn messy info into next steps, "
                "highlight risks.\n\n"
                "Remind them Bizzi is not a replacement for a bookkeeper or CPA but acts like a second brain."
            ),
            "followUps": [
                (
                    "What is stressing you out most right now? Cash and bills, too many jobs, admin overload, or "
                    "something else?"
                ),
            ],
            "followUpPrompt": "Want me to walk through that problem with you now? (yes or no)",
            "nextStep": "Offer concrete help on the stressor they mention.",
            "devNotes": ["Use their stressor answer to personalize future insights."],
            "suggestedActions": [],
        },
        {
            "id": "first_step",
            "title": "What to do first to get set up",
            "canonicalPrompt": "What should I do first to get set up?",
            "matchers": [r"what should i do first", r"first step to get set up", r"where do i start"],
            "response": (
                "Keep it simple and frame the first 10-15 minutes:\n\n"
                "Step 1 - Finish the business profile (2-3 minutes) so Bizzi can tailor insights.\n"
                "Step 2 - Connect QuickBooks (5-7 minutes) so Bizzi can answer \"How are we doing?\" with real "
                "numbers.\n"
                "Step 3 - Connect the calendar (2-3 minutes) so Bizzi can see jobs, walkthroughs, and reminders.\n\n"
                "Offer to run a short Bizzi check-in once those are done."
            ),
            "followUps": ["Do you want to start with QuickBooks or with your business profile?"],
            "followUpPrompt": "Ready to start that first step now? (yes or no)",
            "nextStep": "Branch depending on their choice and guide them through that step.",
            "devNotes": [
                "If they pick QuickBooks, restate the Sync steps.",
                "If they pick business profile, ask for name, trade, and team size.",
            ],
            "suggestedActions": [_CHECKLIST_ACTION],
        },
        {
            "id": "connect_jobs_email_calendar",
            "title": "Connect jobs, email, and calendar",
            "canonicalPrompt": "How do I connect my jobs, email, and calendar?",
            "matchers": [
                r"connect (my )?(jobs|jobber|housecall) .*email.*calendar",
                r"hook up .*calendar",
                r"connect email and calendar",
            ],
            "response": (
                "Explain how to hook up the tools they already use:\n\n"
                "Jobs (Jobber / Housecall Pro)\n- Settings -> Sync -> Connect Jobber or Housecall Pro -> approve "
                "access.\n\n"
                "Email\n- From Settings -> Sync connect a Google account.\n- Clarify Bizzi only reads email content "
                "when they ask for summaries or drafts.\n\n"
                "Calendar\n- Connect Google Calendar via Settings -> Sync so Bizzi can pull upcoming events."
            ),
            "followUps": [
                "Which tools are you using right now: Jobber, Housecall Pro, Google Calendar, Gmail, or something else?",
            ],
            "followUpPrompt": "Want me to open the Sync page so you can connect these? (yes or no)",
            "nextStep": "Queue the right nudge once you know which tools they rely on.",
            "devNotes": ["If they mention a tool that is not connected, plan to remind them later."],
            "suggestedActions": [_SYNC_ACTION],
        },
        {
            "id": "what_is_bizzi",
            "title": "What is Bizzi?",
            "canonicalPrompt": "What exactly is Bizzi?",
            "matchers": [r"what (is|exactly is) bizzi", r"explain bizzi", r"who are you bizzi"],
            "response": (
                "Explain that Bizzi is an AI cofounder built for home-service and construction businesses.\n\n"
                "- Once tools are connected, Bizzi acts as a single place to ask questions, see numbers clearly, "
                "and get insights without digging through QuickBooks, emails, or calendars.\n"
                "- Stress that Bizzi does not replace a bookkeeper, office manager, or CPA."
            ),
            "followUps": [],
            "followUpPrompt": "",
            "nextStep": "Invite them to learn more about setup by connecting their tools.",
            "devNotes": [
                "Mention that Bizzi works best when accounting, calendar, email, and job tools are connected.",
            ],
            "suggestedActions": [],
        },
        {
            "id": "who_is_bizzi_for",
            "title": "Who is Bizzi for?",
            "canonicalPrompt": "Who is Bizzi for?",
            "matchers": [r"who is bizzi for", r"bizzi.*for (what|which) businesses"],
            "response": (
                "Describe Bizzi's target audience:\n"
                "- Primarily home-service and construction founders (HVAC, roofing, remodeling/GCs, plumbing, "
                "electrical, landscaping, cleaning, similar trades).\n"
                "- Anyone running jobs, managing crews, sending invoices, and worrying about cash flow can benefit."
            ),
            "followUps": [],
            "followUpPrompt": "",
            "nextStep": "Ask what trade they are in so Bizzi can tailor language.",
            "devNotes": [],
            "suggestedActions": [],
        },
        {
            "id": "what_can_bizzi_do_now",
            "title": "Current Bizzi capabilities",
            "canonicalPrompt": "What can Bizzi help me with right now?",
            "matchers": [r"what can bizzi help.*now", r"what does bizzi do right now"],
            "response": (
                "Frame the current strengths:\n"
                "1. Clarity on numbers (after QuickBooks connect): revenue/expense/profit trends, where money is "
                "going, month comparisons.\n"
                "2. Single brain for operations (calendar + jobs + email): summarize upcoming jobs, remind about "
                "important dates, turn messy info into next steps.\n"
                "3. Decision support: answer questions like \"How did we do this month?\" using real data."
            ),
            "followUps": [],
            "followUpPrompt": "Want help connecting those tools so I can start answering with real data? (yes or no)",
            "nextStep": "Guide them toward connecting QuickBooks or other integrations.",
            "devNotes": [],
            "suggestedActions": [],
        },
        {
            "id": "future_capabilities",
            "title": "Future of Bizzi",
            "canonicalPrompt": "What will Bizzi be able to do in the future?",
            "matchers": [r"what will bizzi.*future", r"future plans for bizzi"],
            "response": (
                "Set realistic expectations:\n"
                "- Over time the goal is to move from insights into more automation.\n"
                "- Examples: helping clean up bookkeeping, drafting more follow-ups, highlighting repeat workflows.\n"
                "- Reassure them Bizzi will never make big changes without approval."
            ),
            "followUps": [],
            "followUpPrompt": "",
            "nextStep": "",
            "devNotes": [],
            "suggestedActions": [],
        },
        {
            "id": "no_quickbooks",
            "title": "What if I don't use QuickBooks?",
            "canonicalPrompt": "What if I don’t use QuickBooks or these tools yet?",
            "matchers": [r"what if i don't use quickbooks", r"i don't use qb", r"no quickbooks"],
            "response": (
                "Reassure them:\n"
                "- They can still use Bizzi for planning and decision support, but answers will be less precise "
                "without real data.\n"
                "- They will get the most value if accounting is in QuickBooks or a similar system Bizzi can plug "
                "into."
            ),
            "followUps": [],
            "followUpPrompt": "Want help deciding which integration to start with? (yes or no)",
            "nextStep": "Recommend at least one integration to connect next.",
            "devNotes": [],
            "suggestedActions": [],
        },
        {
            "id": "bookkeeper_question",
            "title": "Does Bizzi replace my bookkeeper?",
            "canonicalPrompt": "Does Bizzi replace my bookkeeper or accountant?",
            "matchers": [r"replace my bookkeeper", r"replace my accountant"],
            "response": (
                "Make it clear:\n"
                "- Bizzi does not replace a bookkeeper, accountant, or CPA.\n"
                "- It provides clarity and context: explains numbers, shows trends, answers \"what/why\" using data.\n"
                "- It does not file taxes, issue statements, or give regulated financial/legal advice."
            ),
            "followUps": [],
            "followUpPrompt": "",
            "nextStep": "",
            "devNotes": [],
            "suggestedActions": [],
        },
        {
            "id": "fallback_guardrail",
            "title": "Fallback for unsupported requests",
            "canonicalPrompt": "Fallback: When user asks for something Bizzi can't do",
            "matchers": [
                r"can you (file taxes|run payroll|automate invoicing|push transactions)",
                r"do .* in quickbooks",
                r"not supported yet",
            ],
            "response": (
                "Provide the guardrail answer:\n\n"
                "- Acknowledge the idea and say it's something Bizzi would love to help with over time.\n"
                "- Emphasize current focus: understanding numbers/jobs, giving clear summaries, drafting plans.\n"
                "- State clearly that Bizzi does not yet [requested action], but can help think through it using "
                "available data and highlight related patterns."
            ),
            "followUps": [],
            "followUpPrompt": "",
            "nextStep": "",
            "devNotes": [
                (
                    "Examples of unsupported actions: file taxes, run payroll, fully automate invoicing, push "
                    "transactions directly into QuickBooks."
                ),
            ],
            "suggestedActions": [],
        },
    ],
}


@dataclass(frozen=True, slots=True)
class OnboardingPrompt:
    id: str
    title: str
    canonical_prompt: str
    matchers: tuple[re.Pattern[str], ...]
    response: str
    follow_ups: tuple[str, ...] = ()
    follow_up_prompt: str = ""
    next_step: str = ""
    dev_notes: tuple[str, ...] = ()
    suggested_actions: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def matches(self, normalized: str) -> bool:
        if self.canonical_prompt and self.canonical_prompt.strip().lower() == normalized:
            return True
        return any(pattern.search(normalized) for pattern in self.matchers)


def _compile_matchers(entry_id: str, raw: Any) -> tuple[re.Pattern[str], ...]:
    compiled: list[re.Pattern[str]] = []
    for source in raw or []:
        try:
            compiled.append(re.compile(str(source), re.IGNORECASE))
        except re.error as exc:
            logger.warning("Skipping invalid onboarding matcher for %s: %r (%s)", entry_id, source, exc)
    return tuple(compiled)


def _str_tuple(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item).strip() for item in raw if str(item).strip())


def _parse_bank(raw: Any) -> tuple[OnboardingPrompt, ...]:
    entries: list[OnboardingPrompt] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        entry_id = str(item.get("id") or "").strip()
        title = str(item.get("title") or "").strip()
        if not entry_id or not title:
            continue
        actions = item.get("suggestedActions")
        entries.append(
            OnboardingPrompt(
                id=entry_id,
                title=title,
                canonical_prompt=str(item.get("canonicalPrompt") or ""),
                matchers=_compile_matchers(entry_id, item.get("matchers")),
                response=str(item.get("response") or "").strip(),
                follow_ups=_str_tuple(item.get("followUps")),
                follow_up_prompt=str(item.get("followUpPrompt") or ""),
                next_step=str(item.get("nextStep") or ""),
                dev_notes=_str_tuple(item.get("devNotes")),
                suggested_actions=tuple(dict(a) for a in actions if isinstance(a, dict)) if isinstance(actions, list) else (),
            )
        )
    return tuple(entries)


def _cfg() -> dict[str, Any]:
    return load_prompt_json("onboarding.json", _DEFAULTS)


_CFG = _cfg()

ONBOARDING_TONE_BLOCK = "\n".join(_str_tuple(_CFG.get("tone_lines")) or _DEFAULTS["tone_lines"])
_TOPIC_NOTE_TEMPLATE = str(_CFG.get("topic_note_template") or _DEFAULTS["topic_note_template"])
CHECKLIST_TEMPLATE: tuple[dict[str, str], ...] = tuple(
    {"key": str(item.get("key")), "label": str(item.get("label"))}
    for item in (_CFG.get("checklist") or _DEFAULTS["checklist"])
    if isinstance(item, dict) and item.get("key")
)
ONBOARDING_PROMPT_BANK = _parse_bank(_CFG.get("prompt_bank")) or _parse_bank(_DEFAULTS["prompt_bank"])
_BANK_BY_ID = {entry.id: entry for entry in ONBOARDING_PROMPT_BANK}


def get_onboarding_prompt(prompt_id: str | None) -> OnboardingPrompt | None:
    return _BANK_BY_ID.get(str(prompt_id or "").strip())


def identify_onboarding_prompt(text: str, hint_id: str | None = None) -> OnboardingPrompt | None:
    """Looks up a bank entry by explicit id hint first, then by the message text."""
    hinted = get_onboarding_prompt(hint_id)
    if hinted is not None:
        return hinted
    normalized = (text or "").strip().lower()
    if not normalized:
        return None
    for entry in ONBOARDING_PROMPT_BANK:
        if entry.matches(normalized):
            return entry
    return None


def build_onboarding_tone_block(topic_title: str | None = None) -> str:
    if not topic_title:
        return ONBOARDING_TONE_BLOCK
    return f"{ONBOARDING_TONE_BLOCK}\n{_TOPIC_NOTE_TEMPLATE.format(title=topic_title)}"


def build_onboarding_guide(entry: OnboardingPrompt | None, checklist_text: str = "") -> str:
    if entry is None:
        return ""
    parts = [f"### Onboarding Script: {entry.title}", entry.response]
    if checklist_text:
        parts.append(f"Current checklist snapshot:\n{checklist_text}")
    if entry.next_step:
        parts.append(f"Next-step CTA: {entry.next_step}")
    if entry.follow_ups:
        parts.append("Ask these follow-up questions conversationally:")
        parts.append("\n".join(f"- {question}" for question in entry.follow_ups))
    if entry.follow_up_prompt:
        parts.append(f"Yes/no follow-up to end with: {entry.follow_up_prompt}")
    if entry.dev_notes:
        parts.append("Implementation notes:")
        parts.append("\n".join(f"- {note}" for note in entry.dev_notes))
    return "\n\n".join(part for part in parts if part)
