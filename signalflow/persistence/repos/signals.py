from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import WorkflowSignal
from signalflow.persistence.guards import tenant_predicate


async def get_signal(session: AsyncSession, signal_id: str) -> WorkflowSignal | None:
    # Unscoped lookup; callers compare tenant ownership themselves so 404 vs 403 stays their choice.
    result = await session.execute(select(WorkflowSignal).where(WorkflowSignal.id == signal_id))
    return result.scalar_one_or_none()


async def get_by_dedup_key(
    session: AsyncSession, *, tenant_id: str, source: str, dedup_key: str
) -> WorkflowSignal | None:
    result = await session.execute(
        select(WorkflowSignal).where(
            tenant_predicate(WorkflowSignal, tenant_id),
            WorkflowSignal.source == source,
            WorkflowSignal.dedup_key == dedup_key,
        )
    )
    return result.scalar_one_or_none()


async def insert_or_get(
    session: AsyncSession,
    *,
    tenant_id: str,
    source: str,
    signal_type: str,
    payload: dict[str, Any],
    metadata: dict[str, Any] | None,
    urgency: str,
    dedup_key: str,
    client_id: str | None = None,
) -> tuple[WorkflowSignal, bool]:
    # Race-safe insert: the unique constraint decides the winner; losers reload the stored row.
    signal = WorkflowSignal(
        tenant_id=tenant_id,
        source=source,
        signal_type=signal_type,
        payload_json=payload,
        metadata_json=metadata,
        urgency=urgency,
        dedup_key=dedup_key,
        client_id=client_id,
        status="pending",
        retry_count=0,
    )
    session.add(signal)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrency can still raise integrity errors; rollback and reload.
        await session.rollback()
        existing = await get_by_dedup_key(
            session, tenant_id=tenant_id, source=source, dedup_key=dedup_key
        )
        if existing is None:
            raise
        return existing, False
    return signal, True


async def list_signals(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
    source: str | None = None,
    limit: int = 100,
) -> list[WorkflowSignal]:
    stmt = select(WorkflowSignal).where(tenant_predicate(WorkflowSignal, tenant_id))
    if status:
        stmt = stmt.where(WorkflowSignal.status == status)
    if source:
        stmt = stmt.where(WorkflowSignal.source == source)
    stmt = stmt.order_by(WorkflowSignal.created_at.desc(), WorkflowSignal.id).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def mark_processed(signal: WorkflowSignal) -> None:
    signal.status = "processed"
    signal.last_error = None
    signal.processed_at = datetime.now(timezone.utc)


def mark_failed(signal: WorkflowSignal, error: str) -> None:
    signal.status = "failed"
    signal.last_error = error
    signal.processed_at = datetime.now(timezone.utc)


def mark_retrying(signal: WorkflowSignal) -> None:
    # Retry reuses the row: payload and dedup key never change, only the processing state.
    signal.status = "pending"
    signal.retry_count = (signal.retry_count or 0) + 1
    signal.last_error = None
