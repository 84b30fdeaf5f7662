from __future__ import annotations

import json

import pytest
from pydantic import BaseModel
from sqlalchemy import select

from signalflow.core.errors import SchemaValidationError, TransientFailureError
from signalflow.domain.models import AiExecution
from signalflow.persistence.db import SessionLocal
from signalflow.providers.llm.fake import FakeAIProvider
from signalflow.services.ai.cache import ExecutionCache
from signalflow.services.ai.hardened import (
    AIRequest,
    HardenedExecutor,
    build_hardened_executor,
    compute_fingerprint,
    normalize_prompt,
    parse_response,
)
from signalflow.services.resilience import RetryPolicy


class Summary(BaseModel):
    headline: str
    score: int


_FAST_RETRY = RetryPolicy(timeout_ms=50, max_attempts=3, backoff_ms=1)


def _executor(provider: FakeAIProvider) -> HardenedExecutor:
    return HardenedExecutor(provider, cache=ExecutionCache(ttl_s=60), retry_policy=_FAST_RETRY)


def _request(prompt: str = "Summarize the deal", **values) -> AIRequest[Summary]:
    return AIRequest(tenant_id="agency-1", prompt=prompt, schema=Summary, **values)


async def _rows() -> list[AiExecution]:
    async with SessionLocal() as session:
        result = await session.execute(select(AiExecution).order_by(AiExecution.created_at))
        return list(result.scalars().all())


def test_fingerprint_ignores_whitespace_but_not_model() -> None:
    assert normalize_prompt("  Summarize\n\tthe   deal ") == "Summarize the deal"
    base = compute_fingerprint("m1", Summary, "Summarize the deal")
    assert base == compute_fingerprint("m1", Summary, "Summarize  the\ndeal")
    assert base != compute_fingerprint("m2", Summary, "Summarize the deal")


def test_parse_response_reports_schema_errors() -> None:
    with pytest.raises(SchemaValidationError) as exc_info:
        parse_response('{"headline": "x"}', Summary)
    assert exc_info.value.errors[0]["field"] == "score"
    with pytest.raises(SchemaValidationError):
        parse_response("not json", Summary)


@pytest.mark.asyncio
async def test_timeout_then_success_logs_one_row() -> None:
    provider = FakeAIProvider(
        [json.dumps({"headline": "Closed", "score": 9})],
        # The first attempt is cancelled while sleeping, before it consumes a response.
        delays_s=[1.0, 0.0],
    )
    result = await _executor(provider).execute_with_schema(_request())

    assert result.result == Summary(headline="Closed", score=9)
    assert result.cached is False
    assert provider.call_count == 2
    rows = await _rows()
    assert len(rows) == 1
    assert (rows[0].status, rows[0].cached, rows[0].retry_count) == ("success", False, 1)
    assert rows[0].id == result.execution_id
    assert rows[0].total_tokens == result.total_tokens > 0


@pytest.mark.asyncio
async def test_cache_hit_skips_provider() -> None:
    provider = FakeAIProvider(default={"headline": "Closed", "score": 9})
    executor = _executor(provider)

    first = await executor.execute_with_schema(_request())
    second = await executor.execute_with_schema(_request("Summarize   the deal"))

    assert provider.call_count == 1
    assert second.cached is True
    assert second.result == first.result
    rows = await _rows()
    assert [row.status for row in rows] == ["success", "cached"]
    assert rows[1].cached is True


@pytest.mark.asyncio
async def test_use_cache_false_always_calls_provider() -> None:
    provider = FakeAIProvider(default={"headline": "Closed", "score": 9})
    executor = _executor(provider)
    await executor.execute_with_schema(_request(use_cache=False))
    await executor.execute_with_schema(_request(use_cache=False))
    assert provider.call_count == 2


@pytest.mark.asyncio
async def test_schema_invalid_is_not_retried_or_cached() -> None:
    provider = FakeAIProvider([json.dumps({"headline": "missing score"})])
    executor = _executor(provider)

    with pytest.raises(SchemaValidationError):
        await executor.execute_with_schema(_request())

    assert provider.call_count == 1
    assert (await executor.cache.stats())["size"] == 0
    rows = await _rows()
    assert len(rows) == 1
    assert rows[0].status == "failed"
    assert "SchemaValidationError" in rows[0].error


@pytest.mark.asyncio
async def test_transient_exhaustion_raises_transient_failure() -> None:
    provider = FakeAIProvider([TimeoutError("t1"), ConnectionError("c2"), TimeoutError("t3")])

    with pytest.raises(TransientFailureError) as exc_info:
        await _executor(provider).execute_with_schema(_request())

    assert exc_info.value.status_code == 503
    assert provider.call_count == 3
    rows = await _rows()
    assert len(rows) == 1
    assert (rows[0].status, rows[0].retry_count) == ("failed", 2)


@pytest.mark.asyncio
async def test_lineage_fields_are_recorded() -> None:
    provider = FakeAIProvider(default={"headline": "Closed", "score": 9})
    await _executor(provider).execute_with_schema(
        _request(workflow_execution_id="exec-1", step_id="summarize", operation="summarize_deal")
    )
    row = (await _rows())[0]
    assert (row.workflow_execution_id, row.step_id, row.operation, row.provider) == (
        "exec-1",
        "summarize",
        "summarize_deal",
        "fake",
    )


class Ack(BaseModel):
    ok: bool = True


@pytest.mark.asyncio
async def test_built_executor_uses_configured_provider() -> None:
    # The test environment selects the fake provider, which answers "{}".
    result = await build_hardened_executor().execute_with_schema(
        AIRequest(tenant_id="agency-1", prompt="ping", schema=Ack)
    )
    assert result.result.ok is True
    assert (await _rows())[0].provider == "fake"
