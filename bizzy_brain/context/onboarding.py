from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from ..prompts.onboarding import (
    CHECKLIST_TEMPLATE,
    OnboardingPrompt,
    build_onboarding_guide,
    build_onboarding_tone_block,
    identify_onboarding_prompt,
)

DONE = "done"
PENDING = "pending"


def profile_is_complete(profile: Mapping[str, Any] | None) -> bool:
    if not profile:
        return False
    name = profile.get("name") or profile.get("business_name")
    business_type = profile.get("business_type") or profile.get("businessType")
    return bool(name and profile.get("industry") and business_type)


def build_checklist(*, profile_complete: bool, accounting_connected: bool) -> List[Dict[str, str]]:
    items: List[Dict[str, str]] = []
    for item in CHECKLIST_TEMPLATE:
        status = PENDING
        if item["key"] == "business_profile" and profile_complete:
            status = DONE
        elif item["key"] == "quickbooks" and accounting_connected:
            status = DONE
        items.append({**item, "status": status})
    return items


def checklist_text(items: List[Dict[str, str]]) -> str:
    return "\n".join(f"{'✅' if item['status'] == DONE else '⏳'} {item['label']}" for item in items)


@dataclass(slots=True)
class OnboardingState:
    completed_once: bool = False
    profile_complete: bool = False
    accounting_connected: bool = False
    viewed_integrations: bool = False
    checklist: List[Dict[str, str]] = field(default_factory=list)
    prompt: OnboardingPrompt | None = None
    hint_id: str | None = None

    @property
    def mode_active(self) -> bool:
        if self.completed_once:
            return False
        return not (self.profile_complete and self.accounting_connected and self.viewed_integrations)

    @property
    def show_tone(self) -> bool:
        return self.mode_active or self.prompt is not None

    @property
    def prompt_id(self) -> str | None:
        return self.prompt.id if self.prompt is not None else self.hint_id

    def tone_block(self) -> str:
        if not self.show_tone:
            return ""
        return build_onboarding_tone_block(self.prompt.title if self.prompt is not None else None)

    def guide(self) -> str:
        return build_onboarding_guide(self.prompt, checklist_text(self.checklist))

    @property
    def suggested_actions(self) -> List[Dict[str, Any]]:
        if self.prompt is None:
            return []
        return [dict(action) for action in self.prompt.suggested_actions]

    @property
    def follow_up_prompt(self) -> str:
        return self.prompt.follow_up_prompt if self.prompt is not None else ""

    def meta(self) -> Dict[str, Any]:
        return {
            "active": self.show_tone,
            "promptId": self.prompt.id if self.prompt is not None else None,
            "completedOnce": self.completed_once,
            "checklist": [dict(item) for item in self.checklist],
            "profileComplete": self.profile_complete,
            "qbConnected": self.accounting_connected,
            "hasViewedIntegrationsPage": self.viewed_integrations,
        }


def resolve_onboarding(
    message: str,
    profile: Mapping[str, Any] | None,
    *,
    accounting_connected: bool,
    hint_id: str | None = None,
) -> OnboardingState:
    complete = profile_is_complete(profile)
    return OnboardingState(
        completed_once=bool((profile or {}).get("onboarding_completed_once")),
        profile_complete=complete,
        accounting_connected=accounting_connected,
        viewed_integrations=bool((profile or {}).get("has_viewed_integrations_page")),
        checklist=build_checklist(profile_complete=complete, accounting_connected=accounting_connected),
        prompt=identify_onboarding_prompt(message, hint_id),
        hint_id=hint_id,
    )
