from __future__ import annotations

import pytest

from signalflow.services.ai.cache import ExecutionCache


@pytest.mark.asyncio
async def test_entries_expire_lazily_on_read() -> None:
    now = {"t": 100.0}
    cache = ExecutionCache(ttl_s=60, clock=lambda: now["t"])
    await cache.set("fp-1", {"summary": "ok"})

    now["t"] = 159.0
    entry = await cache.get("fp-1")
    assert entry is not None and entry.result == {"summary": "ok"}

    now["t"] = 160.0
    assert await cache.get("fp-1") is None
    assert (await cache.stats())["size"] == 0


@pytest.mark.asyncio
async def test_zero_ttl_never_expires() -> None:
    now = {"t": 0.0}
    cache = ExecutionCache(ttl_s=60, clock=lambda: now["t"])
    await cache.set("fp-1", 1, ttl_s=0)
    now["t"] = 10_000.0
    assert await cache.get("fp-1") is not None


@pytest.mark.asyncio
async def test_invalidate_and_clear() -> None:
    cache = ExecutionCache(ttl_s=60)
    await cache.set("fp-1", 1)
    await cache.set("fp-2", 2)
    assert await cache.stats() == {"size": 2, "keys": ["fp-1", "fp-2"]}
    assert await cache.invalidate("fp-1") is True
    assert await cache.invalidate("fp-1") is False
    assert await cache.clear() == 1
    assert await cache.get("fp-2") is None
