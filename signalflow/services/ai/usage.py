from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.errors import ForbiddenError
from signalflow.domain.caller import Caller
from signalflow.domain.results import ServiceResult
from signalflow.persistence.repos import ai_executions as ai_executions_repo


logger = logging.getLogger(__name__)

_TOTAL_KEYS = (
    "total_requests",
    "successful_requests",
    "failed_requests",
    "cached_requests",
    "prompt_tokens",
    "completion_tokens",
    "total_tokens",
)


@dataclass(frozen=True)
class UsageSummary:
    tenant_id: str
    window_days: int
    since: datetime
    totals: dict[str, int]
    by_model: list[dict[str, Any]] = field(default_factory=list)


async def get_usage_summary(
    session: AsyncSession, caller: Caller, *, window_days: int = 30
) -> ServiceResult[UsageSummary]:
    """Aggregate the caller's AI executions over the trailing window.

    Usage is always reported for the caller's own tenant, including for
    super-operators, so a tenant header is required.
    """
    if not caller.tenant_id:
        return ServiceResult.failure(ForbiddenError("Tenant context required to read AI usage"))
    since = datetime.now(timezone.utc) - timedelta(days=window_days)
    rows = await ai_executions_repo.summarize_usage(session, tenant_id=caller.tenant_id, since=since)
    totals = {key: sum(row[key] for row in rows) for key in _TOTAL_KEYS}
    logger.info(
        "ai_usage_summarized tenant_id=%s window_days=%s requests=%s",
        caller.tenant_id,
        window_days,
        totals["total_requests"],
    )
    return ServiceResult.success(
        UsageSummary(
            tenant_id=caller.tenant_id,
            window_days=window_days,
            since=since,
            totals=totals,
            by_model=rows,
        )
    )
