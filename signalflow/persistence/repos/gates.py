from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import GateDecision
from signalflow.persistence.guards import tenant_predicate


async def insert_decision(
    session: AsyncSession,
    *,
    tenant_id: str,
    gate_type: str,
    target_type: str,
    target_id: str,
    decision: str,
    rationale: str | None,
    actor_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> GateDecision:
    # Decisions are append-only; no update path exists.
    row = GateDecision(
        tenant_id=tenant_id,
        gate_type=gate_type,
        target_type=target_type,
        target_id=target_id,
        decision=decision,
        rationale=rationale,
        actor_id=actor_id,
        metadata_json=metadata,
    )
    session.add(row)
    await session.commit()
    return row


async def list_decisions(
    session: AsyncSession,
    *,
    tenant_id: str,
    target_type: str,
    target_id: str,
    gate_type: str | None = None,
    limit: int = 100,
) -> list[GateDecision]:
    stmt = select(GateDecision).where(
        tenant_predicate(GateDecision, tenant_id),
        GateDecision.target_type == target_type,
        GateDecision.target_id == target_id,
    )
    if gate_type:
        stmt = stmt.where(GateDecision.gate_type == gate_type)
    stmt = stmt.order_by(GateDecision.created_at.desc(), GateDecision.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
