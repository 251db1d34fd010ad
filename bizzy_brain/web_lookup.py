from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Protocol

from .common import clip
from .usage import UsageManager, UsageSnapshot

logger = logging.getLogger("bizzy_brain")

ENTRY_CHAR_LIMIT = 300
TOTAL_CHAR_LIMIT = 1800
MAX_ENTRIES = 3

_BUSINESS_GUARD = re.compile(
    r"\b(cash flow|quickbooks|invoice|invoices|ar|accounts receivable|ap|payables|job|crew|marketing|ad spend|"
    r"tax|forecast|kpi|profit|revenue|expenses|payroll|vendor)\b"
)
_LIVE_SIGNALS = tuple(
    re.compile(pattern)
    for pattern in (
        r"\b(nba|nfl|mlb|nhl|soccer|premier league|record|score|scores|standings|schedule|playoffs|bracket|"
        r"game today|games today)\b",
        r"\b(beat|win|won|lost|loss|score|who did (they|the) beat)\b",
        r"\b(stock|share price|ticker|price today|market close|market open)\b",
        r"\b(latest news|breaking news|what.?s happening|what happened today|this week|today|this morning|"
        r"this evening)\b",
        r"\b(weather|forecast today|temperature|rain|snow)\b",
    )
)
_SCHEME_RE = re.compile(r"^https?://")


class WebSearchClient(Protocol):
    configured: bool

    async def search(self, query: str) -> Dict[str, Any] | None: ...


def needs_web_lookup(message: str) -> bool:
    """True when the message asks for live data and is not about the business's own numbers."""
    text = (message or "").lower()
    if _BUSINESS_GUARD.search(text):
        return False
    return any(pattern.search(text) for pattern in _LIVE_SIGNALS)


def _host(url: object) -> str:
    return _SCHEME_RE.sub("", str(url or ""))


def _game_line(game: Dict[str, Any]) -> str:
    teams = [team for team in game.get("teams") or [] if isinstance(team, dict)]
    names = " vs ".join(str(team.get("name")) for team in teams[:2] if team.get("name"))
    score = " - ".join(str(team.get("score")) for team in teams[:2] if team.get("score") is not None)
    when = str(game.get("when") or game.get("status") or "")
    return " | ".join(part for part in (names, score, when) if part)


def _sports_entry(sports: Dict[str, Any]) -> str:
    title = str(sports.get("title") or sports.get("league") or "Sports result")
    details: List[str] = []
    if sports.get("game_spotlight"):
        details.append(str(sports["game_spotlight"]))
    if sports.get("description"):
        details.append(str(sports["description"]))

    games = [game for game in sports.get("games") or [] if isinstance(game, dict)]
    if games:
        scored = [
            game
            for game in games
            if any(isinstance(team, dict) and team.get("score") is not None for team in game.get("teams") or [])
        ]
        latest = _game_line(scored[0] if scored else games[0])
        if latest:
            details.append(latest)
        recent = [line for line in (_game_line(game) for game in scored[:3]) if line]
        if recent:
            details.append(f"Recent games: {' • '.join(recent)}")

    entry = f"{title} — {' • '.join(details)}".strip()
    source = sports.get("link") or sports.get("source")
    if source:
        entry += f" (source: {_host(source)})"
    return entry[:ENTRY_CHAR_LIMIT]


def _organic_entry(result: Dict[str, Any]) -> str:
    title = str(result.get("title") or "Result")
    snippet = result.get("snippet") or " ".join(str(word) for word in result.get("snippet_highlighted_words") or [])
    entry = f"{title} — {snippet}".strip()
    source = result.get("displayed_link") or result.get("link")
    if source:
        entry += f" (source: {_host(source)})"
    return clip(entry, ENTRY_CHAR_LIMIT)


def normalize_search_results(data: Dict[str, Any] | None, *, today: date) -> str:
    """Renders a SerpAPI payload into a dated, numbered block; empty string when nothing usable."""
    if not isinstance(data, dict):
        return ""

    entries: List[str] = []
    sports = data.get("sports_results")
    if isinstance(sports, dict):
        entries.append(_sports_entry(sports))

    for result in data.get("organic_results") or []:
        if len(entries) >= MAX_ENTRIES:
            break
        if isinstance(result, dict):
            entries.append(_organic_entry(result))

    kept: List[str] = []
    total = 0
    for entry in entries:
        if not entry:
            continue
        if total + len(entry) > TOTAL_CHAR_LIMIT:
            break
        kept.append(entry)
        total += len(entry)
    if not kept:
        return ""

    lines = [f"Web search results as of {today.isoformat()}:"]
    lines.extend(f"{index}) {entry}" for index, entry in enumerate(kept, start=1))
    return "\n".join(lines)


@dataclass(slots=True)
class WebLookupOutcome:
    wanted: bool = False
    context: str = ""
    used: bool = False
    limit_reached: bool = False
    not_configured: bool = False

    @property
    def unavailable(self) -> bool:
        """Live data was wanted but nothing will ground the answer."""
        return self.wanted and not self.context and (self.limit_reached or self.not_configured)


class WebLookup:
    def __init__(
        self,
        client: WebSearchClient | None,
        usage: UsageManager,
        *,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.client = client
        self.usage = usage
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    @property
    def configured(self) -> bool:
        return bool(self.client is not None and getattr(self.client, "configured", False))

    async def run(self, user_id: str, message: str, snapshot: UsageSnapshot) -> WebLookupOutcome:
        outcome = WebLookupOutcome(wanted=needs_web_lookup(message))
        outcome.limit_reached = not self.usage.web_lookup_allowed(snapshot)
        if not outcome.wanted:
            return outcome
        outcome.not_configured = not self.configured
        if outcome.not_configured or outcome.limit_reached:
            logger.info(
                "[web] lookup skipped not_configured=%s limit_reached=%s",
                outcome.not_configured,
                outcome.limit_reached,
            )
            return outcome

        assert self.client is not None
        try:
            data = await self.client.search(message)
            context = normalize_search_results(data, today=self._today())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[web] lookup failed: %s", exc)
            return outcome

        if not context:
            logger.warning("[web] no results returned")
            return outcome

        outcome.context = context
        outcome.used = True
        await self.usage.record_web_lookup(user_id)
        return outcome
