from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.services.ai.usage import get_usage_summary


router = APIRouter(prefix="/ai", tags=["ai-usage"], responses=DEFAULT_ERROR_RESPONSES)


class UsageCounts(BaseModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    cached_requests: int
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ModelUsage(UsageCounts):
    provider: str
    model: str


class UsageSummaryResponse(BaseModel):
    tenant_id: str
    window_days: int
    since: str
    totals: UsageCounts
    by_model: list[ModelUsage]


@router.get("/usage", response_model=SuccessEnvelope[UsageSummaryResponse])
async def ai_usage_summary(
    request: Request,
    window_days: int = Query(default=30, ge=1, le=90),
    caller: Caller = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Provide a tenant AI usage summary for the requested window.
    result = await get_usage_summary(db, caller, window_days=window_days)
    raise_for_result(result)
    summary = result.unwrap()
    payload = UsageSummaryResponse(
        tenant_id=summary.tenant_id,
        window_days=summary.window_days,
        since=summary.since.isoformat(),
        totals=UsageCounts(**summary.totals),
        by_model=[ModelUsage(**row) for row in summary.by_model],
    )
    return success_response(request=request, data=payload)
