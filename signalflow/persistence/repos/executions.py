from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import Workflow, WorkflowEvent, WorkflowExecution
from signalflow.persistence.guards import tenant_predicate


async def get_workflow(session: AsyncSession, workflow_id: str) -> Workflow | None:
    result = await session.execute(select(Workflow).where(Workflow.id == workflow_id))
    return result.scalar_one_or_none()


async def get_tenant_workflow(session: AsyncSession, *, tenant_id: str, workflow_id: str) -> Workflow | None:
    result = await session.execute(
        select(Workflow).where(Workflow.id == workflow_id, tenant_predicate(Workflow, tenant_id))
    )
    return result.scalar_one_or_none()


async def get_execution(session: AsyncSession, execution_id: str) -> WorkflowExecution | None:
    result = await session.execute(select(WorkflowExecution).where(WorkflowExecution.id == execution_id))
    return result.scalar_one_or_none()


async def list_executions(
    session: AsyncSession,
    *,
    tenant_id: str,
    workflow_id: str | None = None,
    status: str | None = None,
    trigger_signal_id: str | None = None,
    limit: int = 100,
) -> list[WorkflowExecution]:
    stmt = select(WorkflowExecution).where(tenant_predicate(WorkflowExecution, tenant_id))
    if workflow_id:
        stmt = stmt.where(WorkflowExecution.workflow_id == workflow_id)
    if status:
        stmt = stmt.where(WorkflowExecution.status == status)
    if trigger_signal_id:
        stmt = stmt.where(WorkflowExecution.trigger_signal_id == trigger_signal_id)
    stmt = stmt.order_by(WorkflowExecution.started_at.desc(), WorkflowExecution.id).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def add_execution(
    session: AsyncSession,
    *,
    tenant_id: str,
    workflow_id: str,
    trigger_signal_id: str | None,
    trigger_payload: dict[str, Any] | None,
) -> WorkflowExecution:
    execution = WorkflowExecution(
        tenant_id=tenant_id,
        workflow_id=workflow_id,
        trigger_signal_id=trigger_signal_id,
        trigger_payload_json=trigger_payload,
        status="running",
        started_at=datetime.now(timezone.utc),
    )
    session.add(execution)
    return execution


def add_event(
    session: AsyncSession,
    *,
    execution: WorkflowExecution,
    event_type: str,
    step_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> WorkflowEvent:
    # Events inherit the execution's tenant; they are never written for another tenant.
    event = WorkflowEvent(
        execution_id=execution.id,
        tenant_id=execution.tenant_id,
        event_type=event_type,
        step_id=step_id,
        payload_json=payload,
        occurred_at=datetime.now(timezone.utc),
    )
    session.add(event)
    return event


async def list_events(session: AsyncSession, *, execution_id: str, tenant_id: str) -> list[WorkflowEvent]:
    # Ties on occurred_at fall back to insertion order via the monotonic id.
    result = await session.execute(
        select(WorkflowEvent)
        .where(WorkflowEvent.execution_id == execution_id, tenant_predicate(WorkflowEvent, tenant_id))
        .order_by(WorkflowEvent.occurred_at, WorkflowEvent.id)
    )
    return list(result.scalars().all())
