from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from signalflow.domain.models import AiExecution
from signalflow.services.ai.usage import get_usage_summary
from signalflow.tests.utils.seed import caller_for


def _row(tenant_id: str = "agency-1", status: str = "success", tokens: int = 0, **values) -> AiExecution:
    return AiExecution(
        tenant_id=tenant_id,
        provider=values.pop("provider", "vertex"),
        model=values.pop("model", "gemini-1.5-pro"),
        operation="summarize",
        fingerprint="fp",
        status=status,
        cached=status == "cached",
        prompt_tokens=tokens,
        completion_tokens=tokens // 2,
        total_tokens=tokens + tokens // 2,
        **values,
    )


@pytest.mark.asyncio
async def test_usage_summary_counts_requests_cache_hits_and_tokens(session) -> None:
    session.add_all(
        [
            _row(tokens=100),
            _row(tokens=40),
            _row(status="cached"),
            _row(status="failed", tokens=10),
            _row(model="gemini-1.5-flash", tokens=20),
            _row(tenant_id="agency-2", tokens=999),
            _row(tokens=500, created_at=datetime.now(timezone.utc) - timedelta(days=60)),
        ]
    )
    await session.commit()

    summary = (await get_usage_summary(session, caller_for("agency-1"), window_days=30)).unwrap()

    assert summary.totals == {
        "total_requests": 5,
        "successful_requests": 4,
        "failed_requests": 1,
        "cached_requests": 1,
        "prompt_tokens": 170,
        "completion_tokens": 85,
        "total_tokens": 255,
    }
    assert [(row["model"], row["total_requests"]) for row in summary.by_model] == [
        ("gemini-1.5-flash", 1),
        ("gemini-1.5-pro", 4),
    ]


@pytest.mark.asyncio
async def test_usage_summary_is_empty_for_new_tenant_and_needs_tenant(session) -> None:
    empty = (await get_usage_summary(session, caller_for("agency-3"))).unwrap()
    assert empty.totals["total_requests"] == 0
    assert empty.by_model == []

    missing = await get_usage_summary(session, caller_for(None, role="super_operator"))
    assert (missing.status, missing.code) == (403, "TENANT_CONTEXT_REQUIRED")
