from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.errors import WorkflowEngineError
from signalflow.domain.models import WorkflowEvent, WorkflowExecution, WorkflowSignal
from signalflow.persistence.repos import executions as executions_repo


logger = logging.getLogger(__name__)

EVENT_TRIGGERED = "execution.triggered"
EVENT_STEP_STARTED = "step.started"
EVENT_STEP_COMPLETED = "step.completed"
EVENT_STEP_FAILED = "step.failed"
EVENT_COMPLETED = "execution.completed"
EVENT_FAILED = "execution.failed"

_FINAL_STATUSES = {"succeeded", "failed"}


class WorkflowEngine(Protocol):
    async def trigger(
        self,
        session: AsyncSession,
        *,
        workflow_id: str,
        signal: WorkflowSignal,
        payload: dict[str, Any],
    ) -> WorkflowExecution:
        ...


class DatabaseWorkflowEngine:
    """Starts workflow runs as database rows; step runners pick them up from there.

    Triggering does not commit: the caller owns the transaction so that a failed
    routing pass leaves no partial executions behind.
    """

    async def trigger(
        self,
        session: AsyncSession,
        *,
        workflow_id: str,
        signal: WorkflowSignal,
        payload: dict[str, Any],
    ) -> WorkflowExecution:
        workflow = await executions_repo.get_tenant_workflow(
            session, tenant_id=signal.tenant_id, workflow_id=workflow_id
        )
        if workflow is None:
            raise WorkflowEngineError(f"workflow {workflow_id} not found for tenant")
        if workflow.status != "active":
            raise WorkflowEngineError(f"workflow {workflow_id} is {workflow.status}")
        execution = executions_repo.add_execution(
            session,
            tenant_id=signal.tenant_id,
            workflow_id=workflow_id,
            trigger_signal_id=signal.id,
            trigger_payload=payload,
        )
        # Flush to assign the execution id before the first event references it.
        await session.flush()
        executions_repo.add_event(
            session,
            execution=execution,
            event_type=EVENT_TRIGGERED,
            payload={"signal_id": signal.id, "source": signal.source, "signal_type": signal.signal_type},
        )
        logger.info(
            "workflow_triggered tenant_id=%s workflow_id=%s execution_id=%s signal_id=%s",
            signal.tenant_id,
            workflow_id,
            execution.id,
            signal.id,
        )
        return execution

    async def append_event(
        self,
        session: AsyncSession,
        execution: WorkflowExecution,
        event_type: str,
        *,
        step_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WorkflowEvent:
        if execution.status in _FINAL_STATUSES:
            raise WorkflowEngineError(f"execution {execution.id} is already {execution.status}")
        event = executions_repo.add_event(
            session, execution=execution, event_type=event_type, step_id=step_id, payload=payload
        )
        await session.commit()
        return event

    async def complete(
        self,
        session: AsyncSession,
        execution: WorkflowExecution,
        *,
        error: str | None = None,
    ) -> WorkflowExecution:
        if execution.status in _FINAL_STATUSES:
            raise WorkflowEngineError(f"execution {execution.id} is already {execution.status}")
        execution.status = "failed" if error else "succeeded"
        execution.error = error
        execution.finished_at = datetime.now(timezone.utc)
        executions_repo.add_event(
            session,
            execution=execution,
            event_type=EVENT_FAILED if error else EVENT_COMPLETED,
            payload={"error": error} if error else None,
        )
        await session.commit()
        return execution
