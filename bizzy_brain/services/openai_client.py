from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Dict, List

import aiohttp

from ..errors import ProviderError

_RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class _OpenAIHTTPClient:
    provider_name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com",
        timeout_seconds: int = 60,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "https://api.openai.com").strip().rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=max(5, int(timeout_seconds)))
        self._session: aiohttp.ClientSession | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self, path: str) -> str:
        return f"{self.base_url}/v1/{path.lstrip('/')}"

    async def _request(self, path: str, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        if not self.configured:
            raise ProviderError(self.provider_name, "API key is not configured")
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = self._endpoint(path)
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload) as response:
                    text = await response.text()
                    last_status = response.status
                    if response.status == 200:
                        parsed = json.loads(text)
                        if isinstance(parsed, dict):
                            return parsed
                        raise ProviderError(self.provider_name, "non-object JSON response", status=200)

                    if response.status not in _RETRIABLE_STATUSES:
                        raise ProviderError(
                            self.provider_name,
                            f"error {response.status}: {text[:400]}",
                            status=response.status,
                        )
                    last_error = ProviderError(
                        self.provider_name,
                        f"retriable error {response.status}: {text[:400]}",
                        status=response.status,
                    )
            except asyncio.CancelledError:
                raise
            except ProviderError as exc:
                if exc.status is not None and exc.status not in _RETRIABLE_STATUSES:
                    raise
                last_error = exc
            except Exception as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        raise ProviderError(
            self.provider_name,
            f"request failed after retries: {last_error}",
            status=last_status,
        )


class OpenAIChatClient(_OpenAIHTTPClient):
    """Chat completions client. Returns the raw provider payload; see ``llm_adapter``."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com",
        timeout_seconds: int = 60,
        temperature: float = 0.7,
        max_output_tokens: int = 1400,
    ) -> None:
        super().__init__(api_key=api_key, base_url=base_url, timeout_seconds=timeout_seconds)
        self.model = (model or "").strip()
        if not self.model:
            raise ValueError("Chat model cannot be empty")
        self.temperature = float(temperature)
        self.max_output_tokens = max(0, int(max_output_tokens or 0))

    @staticmethod
    def _sanitize_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
        mapped: List[Dict[str, str]] = []
        for msg in messages:
            role = str(msg.get("role", "")).strip().lower() or "user"
            if role not in {"system", "user", "assistant"}:
                role = "user"
            content = str(msg.get("content", ""))
            if not content.strip():
                continue
            mapped.append({"role": role, "content": content})
        return mapped

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._sanitize_messages(messages),
            "temperature": float(self.temperature if temperature is None else temperature),
        }
        selected_tokens = self.max_output_tokens if max_output_tokens is None else int(max_output_tokens)
        if selected_tokens > 0:
            payload["max_tokens"] = selected_tokens
        return await self._request("chat/completions", payload)


class OpenAIEmbeddingClient(_OpenAIHTTPClient):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com",
        timeout_seconds: int = 30,
        dimensions: int | None = None,
        max_input_chars: int = 8000,
    ) -> None:
        super().__init__(api_key=api_key, base_url=base_url, timeout_seconds=timeout_seconds)
        self.model = (model or "text-embedding-3-small").strip()
        self.dimensions = int(dimensions) if dimensions else None
        self.max_input_chars = max(1, int(max_input_chars))

    async def embed(self, text: str) -> List[float]:
        clean = (text or "").strip()[: self.max_input_chars]
        if not clean:
            raise ProviderError(self.provider_name, "cannot embed empty text")
        payload: Dict[str, Any] = {"model": self.model, "input": clean}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        data = await self._request("embeddings", payload)
        items = data.get("data") or []
        if not items or not isinstance(items[0], dict):
            raise ProviderError(self.provider_name, "embedding response has no data")
        vector = items[0].get("embedding")
        if not isinstance(vector, list) or not vector:
            raise ProviderError(self.provider_name, "embedding response has no vector")
        return [float(value) for value in vector]
