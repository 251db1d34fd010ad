from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("bizzy_brain.prompts")

# resolved path -> (mtime_ns or None when absent, merged payload)
_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _merge_into(target: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            target[key] = _merge_into(current, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _modified_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _read_override(path: Path) -> dict[str, Any] | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring prompt JSON %s, unreadable: %s", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring prompt JSON %s, top level is %s not an object", path, type(payload).__name__)
        return None
    return payload


def clear_prompt_cache() -> None:
    _CACHE.clear()


def load_prompt_json(filename: str, defaults: dict[str, Any], *, data_dir: Path | None = None) -> dict[str, Any]:
    """Returns ``defaults`` deep-merged with ``prompts/data/<filename>`` when present.

    Results are cached per path and reloaded only when the file's mtime changes.
    Lists in the override replace the default list outright.
    """
    path = (data_dir or _data_dir()) / filename
    key = str(path.resolve())
    stamp = _modified_ns(path)

    hit = _CACHE.get(key)
    if hit is None or hit[0] != stamp:
        merged = copy.deepcopy(defaults)
        if stamp is None:
            logger.debug("no prompt override at %s", path)
        else:
            override = _read_override(path)
            if override is not None:
                merged = _merge_into(merged, override)
        hit = (stamp, merged)
        _CACHE[key] = hit
    return copy.deepcopy(hit[1])
