from __future__ import annotations

import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

from ..errors import ProviderError

logger = logging.getLogger("bizzy_brain")


class LLMStatus(str, enum.Enum):
    TEXT = "text"
    EMPTY = "empty"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class LLMResult:
    """Single normalized outcome of a language-model call."""

    status: LLMStatus
    text: str = ""
    model: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is LLMStatus.TEXT

    def meta(self, provider: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value, "model": self.model, "provider": provider}
        if self.error:
            payload["error"] = self.error
        return payload


class ChatCompletionClient(Protocol):
    model: str

    async def complete(self, messages: List[Dict[str, str]]) -> Dict[str, Any]: ...


def _chunk_text(chunk: Any) -> str:
    if isinstance(chunk, str):
        return chunk
    if not isinstance(chunk, dict):
        return ""
    text = chunk.get("text")
    if isinstance(text, str):
        return text
    if isinstance(text, dict) and isinstance(text.get("value"), str):
        return text["value"]
    content = chunk.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(_chunk_text(part) for part in content)
    return ""


def _strip_reasoning_blocks(text: str) -> str:
    return re.sub(r"<think>.*?</think>\s*", "", text, flags=re.IGNORECASE | re.DOTALL).strip()


def extract_response_text(data: Any) -> str:
    """Pulls plain text out of the response shapes chat providers return."""
    if data is None:
        return ""
    if isinstance(data, str):
        return data.strip()
    if not isinstance(data, dict):
        return ""

    output_text = data.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()
    if isinstance(output_text, list) and output_text:
        return "\n".join(str(item) for item in output_text).strip()

    output = data.get("output")
    if isinstance(output, list):
        for kind in ("message", "reasoning"):
            block = next((item for item in output if isinstance(item, dict) and item.get("type") == kind), None)
            if block and isinstance(block.get("content"), list):
                joined = "".join(_chunk_text(part) for part in block["content"]).strip()
                if joined:
                    return joined

    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        first = choices[0]
        message = first.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str):
                return content.strip()
            if isinstance(content, list):
                return "".join(_chunk_text(part) for part in content).strip()
        if isinstance(first.get("text"), str):
            return first["text"].strip()

    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"].strip()
    return ""


def normalize_llm_response(data: Any, *, model: str = "") -> LLMResult:
    text = _strip_reasoning_blocks(extract_response_text(data))
    resolved_model = model
    if isinstance(data, dict) and isinstance(data.get("model"), str):
        resolved_model = data["model"]
    if text:
        return LLMResult(status=LLMStatus.TEXT, text=text, model=resolved_model)
    reason = ""
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            reason = str(choices[0].get("finish_reason") or "")
    return LLMResult(status=LLMStatus.EMPTY, model=resolved_model, error=reason or "no text in response")


def stub_reply(message: str) -> str:
    return (
        f"Dev stub: I received “{message}”. "
        "I’ll respond with deeper insights once full context and keys are connected."
    )


def reply_text(result: LLMResult, message: str) -> str:
    if result.status is LLMStatus.TEXT:
        return result.text
    if result.status in (LLMStatus.EMPTY, LLMStatus.ERROR, LLMStatus.UNAVAILABLE):
        return stub_reply(message)
    raise AssertionError(f"Unhandled LLM status: {result.status!r}")


class LanguageModelGateway:
    """Wraps the chat client so callers only ever see an ``LLMResult``."""

    def __init__(self, client: ChatCompletionClient | None, *, provider: str = "openai") -> None:
        self.client = client
        self.provider = provider
        self.calls = 0

    @property
    def model(self) -> str:
        return str(getattr(self.client, "model", "") or "")

    @property
    def available(self) -> bool:
        if self.client is None:
            return False
        return bool(getattr(self.client, "configured", True))

    async def generate(self, messages: List[Dict[str, str]]) -> LLMResult:
        if not self.available:
            return LLMResult(status=LLMStatus.UNAVAILABLE, model=self.model, error="language model not configured")
        assert self.client is not None
        self.calls += 1
        try:
            data = await self.client.complete(messages)
        except asyncio.CancelledError:
            raise
        except ProviderError as exc:
            logger.warning("[llm] provider error: %s", exc)
            return LLMResult(status=LLMStatus.ERROR, model=self.model, error=str(exc))
        except Exception as exc:
            logger.exception("[llm] unexpected failure")
            return LLMResult(status=LLMStatus.ERROR, model=self.model, error=str(exc) or type(exc).__name__)
        return normalize_llm_response(data, model=self.model)

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
