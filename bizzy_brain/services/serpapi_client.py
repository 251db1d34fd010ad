from __future__ import annotations

import json
from typing import Any, Dict

import aiohttp

from ..errors import ProviderError


class SerpApiClient:
    """Single query-in, raw-results-out Google search through SerpAPI."""

    provider_name = "serpapi"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://serpapi.com",
        timeout_seconds: int = 15,
        num_results: int = 5,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "https://serpapi.com").strip().rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=max(3, int(timeout_seconds)))
        self.num_results = max(1, int(num_results))
        self._session: aiohttp.ClientSession | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/search"

    def _params(self, query: str) -> Dict[str, str]:
        return {
            "engine": "google",
            "q": query,
            "api_key": self.api_key,
            "gl": "us",
            "hl": "en",
            "num": str(self.num_results),
        }

    async def search(self, query: str) -> Dict[str, Any]:
        if not self.configured:
            raise ProviderError(self.provider_name, "API key is not configured")
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        async with self._session.get(self._endpoint(), params=self._params(query)) as response:
            text = await response.text()
            if response.status != 200:
                raise ProviderError(self.provider_name, f"error {response.status}", status=response.status)
        try:
            parsed = json.loads(text)
        except ValueError as exc:
            raise ProviderError(self.provider_name, f"invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(self.provider_name, "non-object JSON response")
        return parsed
