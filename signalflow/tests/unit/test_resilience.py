from __future__ import annotations

import asyncio

import pytest

from signalflow.core.errors import ProviderUnavailableError, SchemaValidationError
from signalflow.services.resilience import RetryPolicy, RetryStats, is_transient, retry_async
from signalflow.services.telemetry import counters_snapshot


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    stats = RetryStats()
    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
        stats=stats,
    )
    assert result == "ok"
    assert calls["count"] == 2
    assert (stats.attempts, stats.retries) == (2, 1)
    assert counters_snapshot()["external_retries_total"] == 1


@pytest.mark.asyncio
async def test_retry_async_times_out_slow_attempts() -> None:
    calls = {"count": 0}

    async def slow_then_fast() -> str:
        calls["count"] += 1
        if calls["count"] == 1:
            await asyncio.sleep(1)
        return "fast"

    result = await retry_async(slow_then_fast, policy=RetryPolicy(timeout_ms=20, max_attempts=3, backoff_ms=1))
    assert result == "fast"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_errors() -> None:
    calls = {"count": 0}

    async def broken() -> str:
        calls["count"] += 1
        raise SchemaValidationError("bad shape")

    with pytest.raises(SchemaValidationError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_max_attempts() -> None:
    stats = RetryStats()

    async def down() -> str:
        raise ProviderUnavailableError("503")

    with pytest.raises(ProviderUnavailableError):
        await retry_async(down, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1), stats=stats)
    assert stats.attempts == 3


def test_is_transient_classification() -> None:
    assert is_transient(TimeoutError())
    assert is_transient(ConnectionResetError())
    assert is_transient(ProviderUnavailableError("down"))
    assert not is_transient(ValueError("nope"))
    assert not is_transient(SchemaValidationError("bad"))
