from __future__ import annotations

import asyncio
from dataclasses import dataclass
import time
from typing import Any, Callable

from signalflow.core.config import get_settings


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    result: Any
    created_at: float
    ttl_s: int

    def expired(self, now: float) -> bool:
        return self.ttl_s > 0 and now - self.created_at >= self.ttl_s


class ExecutionCache:
    """Process-wide cache of validated AI results keyed by request fingerprint.

    Entries are not tenant-scoped. Expired entries are dropped lazily on read;
    nothing sweeps the cache in the background.
    """

    def __init__(self, *, ttl_s: int | None = None, clock: Callable[[], float] | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._ttl_s = ttl_s if ttl_s is not None else get_settings().ai_cache_ttl_s
        self._clock = clock or time.monotonic

    async def get(self, fingerprint: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[fingerprint]
                return None
            return entry

    async def set(self, fingerprint: str, result: Any, *, ttl_s: int | None = None) -> CacheEntry:
        entry = CacheEntry(
            fingerprint=fingerprint,
            result=result,
            created_at=self._clock(),
            ttl_s=self._ttl_s if ttl_s is None else ttl_s,
        )
        async with self._lock:
            self._entries[fingerprint] = entry
        return entry

    async def invalidate(self, fingerprint: str) -> bool:
        async with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    async def clear(self) -> int:
        async with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    async def stats(self) -> dict[str, Any]:
        async with self._lock:
            return {"size": len(self._entries), "keys": sorted(self._entries)}


_cache: ExecutionCache | None = None


def get_execution_cache() -> ExecutionCache:
    global _cache
    if _cache is None:
        _cache = ExecutionCache()
    return _cache


def reset_execution_cache() -> None:
    # Allow tests to start from an empty cache after tweaking settings.
    global _cache
    _cache = None


async def get_cache_stats() -> dict[str, Any]:
    return await get_execution_cache().stats()


async def clear_cache() -> int:
    return await get_execution_cache().clear()
