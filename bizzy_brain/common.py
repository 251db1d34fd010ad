from __future__ import annotations

import contextlib
import math
import re


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def clip(text: str, limit: int, *, ellipsis: str = "…") -> str:
    """Hard cut to ``limit`` characters, ellipsis included."""
    value = text or ""
    if limit <= 0:
        return ""
    if len(value) <= limit:
        return value
    if limit <= len(ellipsis):
        return value[:limit]
    return value[: limit - len(ellipsis)].rstrip() + ellipsis


def keyword_terms(text: str) -> set[str]:
    return {term for term in re.split(r"\W+", (text or "").lower()) if term}


def as_optional_float(value: object) -> float | None:
    """Reads numbers and numeric strings like ``"12,500"``; booleans are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip().replace(",", "")
    with contextlib.suppress(ValueError):
        amount = float(cleaned)
        if math.isfinite(amount):
            return amount
    return None


def as_float(value: object, default: float = 0.0) -> float:
    amount = as_optional_float(value)
    return default if amount is None else amount


def format_usd(value: object) -> str:
    amount = as_optional_float(value)
    if amount is None:
        return "$0"
    if amount == int(amount):
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def format_pct(value: object) -> str:
    """Formats 0.25 and 25 both as ``25%``."""
    amount = as_optional_float(value)
    if amount is None:
        return "0%"
    scaled = amount if abs(amount) > 1 else amount * 100
    rounded = round(scaled, 1)
    if rounded == int(rounded):
        return f"{int(rounded)}%"
    return f"{rounded}%"


_KNOWN_ROLES = frozenset({"user", "assistant", "system"})


def sanitize_role(role: object) -> str:
    value = str(role or "").strip().lower()
    if value in _KNOWN_ROLES:
        return value
    return "assistant"
