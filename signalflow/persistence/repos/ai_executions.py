from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import AiExecution
from signalflow.persistence.guards import tenant_predicate


async def insert_execution(session: AsyncSession, *, tenant_id: str, values: dict[str, Any]) -> AiExecution:
    row = AiExecution(tenant_id=tenant_id, **values)
    session.add(row)
    await session.commit()
    return row


def _count_where(condition) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def summarize_usage(session: AsyncSession, *, tenant_id: str, since: datetime) -> list[dict[str, Any]]:
    # Cache hits are successful requests that spent no tokens.
    result = await session.execute(
        select(
            AiExecution.provider,
            AiExecution.model,
            func.count(AiExecution.id).label("total_requests"),
            _count_where(AiExecution.status.in_(("success", "cached"))).label("successful_requests"),
            _count_where(AiExecution.status == "failed").label("failed_requests"),
            _count_where(AiExecution.status == "cached").label("cached_requests"),
            func.coalesce(func.sum(AiExecution.prompt_tokens), 0).label("prompt_tokens"),
            func.coalesce(func.sum(AiExecution.completion_tokens), 0).label("completion_tokens"),
            func.coalesce(func.sum(AiExecution.total_tokens), 0).label("total_tokens"),
        )
        .where(tenant_predicate(AiExecution, tenant_id), AiExecution.created_at >= since)
        .group_by(AiExecution.provider, AiExecution.model)
        .order_by(AiExecution.provider, AiExecution.model)
    )
    summaries: list[dict[str, Any]] = []
    for row in result.mappings().all():
        summary = {key: int(value or 0) for key, value in row.items() if key not in {"provider", "model"}}
        summaries.append({"provider": row["provider"], "model": row["model"], **summary})
    return summaries
