from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable


Clock = Callable[[], float]


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Injectable in-process cache with per-entry TTL and LRU eviction.

    ``clock`` defaults to ``time.monotonic``; tests pass a fake to control expiry.
    Concurrent ``get_or_load`` calls for the same key share one in-flight load.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 60.0,
        max_entries: int = 256,
        clock: Clock | None = None,
    ) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self.max_entries = max(1, int(max_entries))
        self._clock: Clock = clock or time.monotonic
        self._entries: OrderedDict[Hashable, _Entry] = OrderedDict()
        self._inflight: dict[Hashable, asyncio.Future[Any]] = {}
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self.misses += 1
            return default
        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, *, ttl_seconds: float | None = None) -> None:
        if not self.enabled:
            return
        ttl = self.ttl_seconds if ttl_seconds is None else max(0.0, float(ttl_seconds))
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        self._entries.move_to_end(key)
        self._evict()

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict(self) -> None:
        if len(self._entries) <= self.max_entries:
            return
        self.purge_expired()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        if not self.enabled:
            return await loader()

        sentinel = object()
        cached = self.get(key, sentinel)
        if cached is not sentinel:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
                # Mark retrieved so an unobserved failure does not log on GC.
                future.exception()
            raise
        else:
            self.set(key, value)
            if not future.done():
                future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
