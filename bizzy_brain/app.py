from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Sequence

from .cache import TTLCache
from .config import Settings
from .context.assembler import ContextAssembler
from .intents import IntentRouter
from .memory.factory import build_memory_store
from .memory.vector_memory import VectorMemory
from .pipeline.engine import BizzyEngine
from .pipeline.persistence import TurnPersister
from .services.llm_adapter import LanguageModelGateway
from .services.openai_client import OpenAIChatClient, OpenAIEmbeddingClient
from .services.serpapi_client import SerpApiClient
from .usage import UsageManager
from .web_lookup import WebLookup

logger = logging.getLogger("bizzy_brain")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_engine(settings: Settings, *, store: Any | None = None) -> BizzyEngine:
    store = store if store is not None else build_memory_store(settings)

    embedder: OpenAIEmbeddingClient | None = None
    chat: OpenAIChatClient | None = None
    if settings.llm_configured:
        embedder = OpenAIEmbeddingClient(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.openai_base_url,
            dimensions=settings.embedding_dimensions,
        )
        chat = OpenAIChatClient(
            api_key=settings.openai_api_key,
            model=settings.chat_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
        )
    else:
        logger.warning("OPENAI_API_KEY is not set; replies use the dev stub and memory is keyword-only")

    search = SerpApiClient(api_key=settings.serpapi_api_key, base_url=settings.serpapi_base_url)
    memory = VectorMemory(
        store,
        embedder,
        dedup_threshold=settings.memory_dedup_threshold,
        match_threshold=settings.memory_match_threshold,
        match_count=settings.memory_match_count,
        keyword_scan_limit=settings.memory_keyword_scan_limit,
    )
    usage = UsageManager(
        store,
        query_cap=settings.monthly_query_cap,
        web_lookup_cap=settings.monthly_web_lookup_cap,
    )
    assembler = ContextAssembler(
        store,
        memory,
        cache=TTLCache(
            ttl_seconds=settings.context_cache_ttl_seconds,
            max_entries=settings.context_cache_max_entries,
        ),
        recent_chat_limit=settings.recent_chat_limit,
        recent_verbatim=settings.recent_chat_verbatim,
        summary_chars=settings.recent_summary_chars,
        demo_mode=settings.demo_mode,
        demo_data_path=settings.demo_data_path,
    )
    return BizzyEngine(
        router=IntentRouter(),
        usage=usage,
        assembler=assembler,
        web=WebLookup(search, usage),
        gateway=LanguageModelGateway(chat),
        persister=TurnPersister(store, memory, embedder),
        demo_mode=settings.demo_mode,
        defer_persistence=settings.defer_persistence,
        closeables=[resource for resource in (embedder, search, store) if resource is not None],
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="bizzy-brain", description="Run one Bizzi turn and print the JSON result.")
    parser.add_argument("message", help="User message for this turn")
    parser.add_argument("--user-id", required=True, help="Owner of the conversation")
    parser.add_argument("--business-id", default=None, help="Business whose context is loaded")
    parser.add_argument("--thread-id", default=None, help="Continue an existing conversation thread")
    parser.add_argument("--type", dest="intent", default=None, help="Force an intent instead of classifying")
    parser.add_argument("--parsed-input", default=None, help="JSON object merged into the turn context")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser.parse_args(argv)


async def _run(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    engine = build_engine(settings)
    await engine.persister.store.init()
    payload: dict[str, Any] = {
        "user_id": args.user_id,
        "message": args.message,
        "type": args.intent,
        "threadId": args.thread_id,
        "business_id": args.business_id,
    }
    if args.parsed_input:
        payload["parsedInput"] = json.loads(args.parsed_input)
    try:
        return await engine.generate_response(payload)
    finally:
        await engine.close()


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = Settings.from_env()
    settings.validate()
    try:
        result = asyncio.run(_run(settings, args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
        return
    print(json.dumps(result, ensure_ascii=False, indent=2))
