from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _clean_secret(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bearer "):
        cleaned = cleaned[7:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


_DEFAULT_DEMO_DATA_PATH = Path(__file__).resolve().parent / "demo" / "demo_data.json"


@dataclass(slots=True)
class Settings:
    openai_api_key: str
    openai_base_url: str
    chat_model: str
    llm_timeout_seconds: int
    llm_temperature: float
    llm_max_output_tokens: int
    embedding_model: str
    embedding_dimensions: int

    serpapi_api_key: str
    serpapi_base_url: str

    monthly_query_cap: int
    monthly_web_lookup_cap: int

    memory_dedup_threshold: float
    memory_match_threshold: float
    memory_match_count: int
    memory_keyword_scan_limit: int

    recent_chat_limit: int
    recent_chat_verbatim: int
    recent_summary_chars: int

    context_cache_ttl_seconds: float
    context_cache_max_entries: int
    defer_persistence: bool

    demo_mode: bool
    demo_data_path: Path

    memory_backend: str
    sqlite_path: Path
    postgres_dsn: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=_clean_secret(_env_lookup("OPENAI_API_KEY") or ""),
            openai_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com"),
            chat_model=_env_str("BIZZY_GPT_MODEL", "gpt-4o-mini", aliases=("OPENAI_MODEL",)),
            llm_timeout_seconds=_env_int("BIZZY_LLM_TIMEOUT_SECONDS", 60),
            llm_temperature=_env_float("BIZZY_LLM_TEMPERATURE", 0.7),
            llm_max_output_tokens=_env_int("BIZZY_LLM_MAX_OUTPUT_TOKENS", 1400),
            embedding_model=_env_str("BIZZY_EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dimensions=_env_int("BIZZY_EMBEDDING_DIMENSIONS", 1536),
            serpapi_api_key=_clean_secret(_env_lookup("SERPAPI_API_KEY", aliases=("SERPAPI_KEY",)) or ""),
            serpapi_base_url=_env_str("SERPAPI_BASE_URL", "https://serpapi.com"),
            monthly_query_cap=_env_int("BIZZY_MONTHLY_QUERY_CAP", 300),
            monthly_web_lookup_cap=_env_int("BIZZY_MONTHLY_WEB_LOOKUP_CAP", 20),
            memory_dedup_threshold=_env_float("BIZZY_MEMORY_DEDUP_THRESHOLD", 0.96),
            memory_match_threshold=_env_float("BIZZY_MEMORY_MATCH_THRESHOLD", 0.75),
            memory_match_count=_env_int("BIZZY_MEMORY_MATCH_COUNT", 3),
            memory_keyword_scan_limit=_env_int("BIZZY_MEMORY_KEYWORD_SCAN_LIMIT", 50),
            recent_chat_limit=_env_int("BIZZY_RECENT_CHAT_LIMIT", 12),
            recent_chat_verbatim=_env_int("BIZZY_RECENT_CHAT_VERBATIM", 6),
            recent_summary_chars=_env_int("BIZZY_RECENT_SUMMARY_CHARS", 600),
            context_cache_ttl_seconds=_env_float("BIZZY_CONTEXT_CACHE_TTL_SECONDS", 60.0),
            context_cache_max_entries=_env_int("BIZZY_CONTEXT_CACHE_MAX_ENTRIES", 256),
            defer_persistence=_env_bool("BIZZY_DEFER_PERSISTENCE", True),
            demo_mode=_env_bool("BIZZY_DEMO", False, aliases=("VITE_BIZZY_DEMO",)),
            demo_data_path=Path(
                _env_str("BIZZY_DEMO_DATA_PATH", str(_DEFAULT_DEMO_DATA_PATH))
            ).expanduser(),
            memory_backend=_env_str("MEMORY_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("MEMORY_SQLITE_PATH", "./data/bizzy_brain.db", aliases=("SQLITE_PATH",))).expanduser(),
            postgres_dsn=_env_str("MEMORY_POSTGRES_DSN", ""),
        )

    @property
    def llm_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def web_search_configured(self) -> bool:
        return bool(self.serpapi_api_key)

    def validate(self) -> None:
        if self.openai_api_key == "put_your_openai_api_key_here":
            raise ValueError("OPENAI_API_KEY is still placeholder")
        if not self.chat_model:
            raise ValueError("BIZZY_GPT_MODEL cannot be empty")
        if self.llm_timeout_seconds < 5:
            raise ValueError("BIZZY_LLM_TIMEOUT_SECONDS must be >= 5")
        if self.llm_temperature < 0.0 or self.llm_temperature > 2.0:
            raise ValueError("BIZZY_LLM_TEMPERATURE must be in [0, 2]")
        if self.llm_max_output_tokens < 0:
            raise ValueError("BIZZY_LLM_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")
        if self.embedding_dimensions < 1:
            raise ValueError("BIZZY_EMBEDDING_DIMENSIONS must be >= 1")

        if self.monthly_query_cap < 1:
            raise ValueError("BIZZY_MONTHLY_QUERY_CAP must be >= 1")
        if self.monthly_web_lookup_cap < 0:
            raise ValueError("BIZZY_MONTHLY_WEB_LOOKUP_CAP must be >= 0")

        for name, value in (
            ("BIZZY_MEMORY_DEDUP_THRESHOLD", self.memory_dedup_threshold),
            ("BIZZY_MEMORY_MATCH_THRESHOLD", self.memory_match_threshold),
        ):
            if value < 0.0 or value > 1.0:
                raise ValueError(f"{name} must be in [0, 1]")
        if self.memory_match_threshold > self.memory_dedup_threshold:
            raise ValueError("BIZZY_MEMORY_MATCH_THRESHOLD must not exceed BIZZY_MEMORY_DEDUP_THRESHOLD")
        if self.memory_match_count < 1:
            raise ValueError("BIZZY_MEMORY_MATCH_COUNT must be >= 1")
        if self.memory_keyword_scan_limit < 1:
            raise ValueError("BIZZY_MEMORY_KEYWORD_SCAN_LIMIT must be >= 1")

        if self.recent_chat_verbatim < 1:
            raise ValueError("BIZZY_RECENT_CHAT_VERBATIM must be >= 1")
        if self.recent_chat_limit < self.recent_chat_verbatim:
            raise ValueError("BIZZY_RECENT_CHAT_LIMIT must be >= BIZZY_RECENT_CHAT_VERBATIM")
        if self.recent_summary_chars < 80:
            raise ValueError("BIZZY_RECENT_SUMMARY_CHARS must be >= 80")

        if self.context_cache_ttl_seconds < 0:
            raise ValueError("BIZZY_CONTEXT_CACHE_TTL_SECONDS must be >= 0 (0 disables caching)")
        if self.context_cache_max_entries < 1:
            raise ValueError("BIZZY_CONTEXT_CACHE_MAX_ENTRIES must be >= 1")

        if self.memory_backend not in {"sqlite", "postgres"}:
            raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
        if self.memory_backend == "postgres" and not self.postgres_dsn:
            raise ValueError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")
