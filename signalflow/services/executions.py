from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.errors import AccessDeniedError, ForbiddenError, NotFoundError, SignalflowError
from signalflow.domain.caller import Caller
from signalflow.domain.models import (
    Workflow,
    WorkflowEvent,
    WorkflowExecution,
    WorkflowSignal,
)
from signalflow.domain.results import ServiceResult
from signalflow.persistence.repos import entities as entities_repo
from signalflow.persistence.repos import executions as executions_repo
from signalflow.persistence.repos import signals as signals_repo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lineage:
    execution: WorkflowExecution
    workflow: Workflow
    signal: WorkflowSignal | None
    events: list[WorkflowEvent]
    created_entities: dict[str, list[Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class EntityLineage:
    kind: str
    entity: Any
    lineage: Lineage | None


def lineage_stamp(execution: WorkflowExecution) -> dict[str, str]:
    # Columns step code must set on every entity it creates so lineage can find it later.
    return {"tenant_id": execution.tenant_id, "workflow_execution_id": execution.id}


class ExecutionTrackingService:
    async def get_events(
        self, session: AsyncSession, execution_id: str, caller: Caller
    ) -> ServiceResult[list[WorkflowEvent]]:
        try:
            execution = await self._require_execution(session, execution_id)
            workflow = await self._require_workflow(session, execution)
            self._require_access(caller, workflow.tenant_id, "workflow", execution_id)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        events = await executions_repo.list_events(
            session, execution_id=execution.id, tenant_id=execution.tenant_id
        )
        return ServiceResult.success(events)

    async def get_lineage(
        self, session: AsyncSession, execution_id: str, caller: Caller
    ) -> ServiceResult[Lineage]:
        try:
            execution = await self._require_execution(session, execution_id)
            # Both the execution and its workflow must belong to the caller's tenant.
            self._require_access(caller, execution.tenant_id, "execution", execution_id)
            workflow = await self._require_workflow(session, execution)
            self._require_access(caller, workflow.tenant_id, "workflow", execution_id)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        return ServiceResult.success(await self._assemble_lineage(session, execution, workflow))

    async def get_task_lineage(
        self, session: AsyncSession, task_id: str, caller: Caller
    ) -> ServiceResult[EntityLineage]:
        return await self._entity_lineage(session, "task", task_id, caller)

    async def get_project_lineage(
        self, session: AsyncSession, project_id: str, caller: Caller
    ) -> ServiceResult[EntityLineage]:
        return await self._entity_lineage(session, "project", project_id, caller)

    async def list_executions(
        self,
        session: AsyncSession,
        caller: Caller,
        *,
        workflow_id: str | None = None,
        status: str | None = None,
        trigger_signal_id: str | None = None,
        limit: int = 100,
    ) -> ServiceResult[list[WorkflowExecution]]:
        if not caller.tenant_id:
            return ServiceResult.failure(ForbiddenError("Tenant context required to list executions"))
        rows = await executions_repo.list_executions(
            session,
            tenant_id=caller.tenant_id,
            workflow_id=workflow_id,
            status=status,
            trigger_signal_id=trigger_signal_id,
            limit=limit,
        )
        return ServiceResult.success(rows)

    async def _require_execution(self, session: AsyncSession, execution_id: str) -> WorkflowExecution:
        execution = await executions_repo.get_execution(session, execution_id)
        if execution is None:
            raise NotFoundError("Execution not found")
        return execution

    async def _require_workflow(self, session: AsyncSession, execution: WorkflowExecution) -> Workflow:
        workflow = await executions_repo.get_workflow(session, execution.workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow not found")
        return workflow

    def _require_access(self, caller: Caller, owner_tenant_id: str, kind: str, execution_id: str) -> None:
        if caller.can_access(owner_tenant_id):
            return
        logger.warning(
            "execution_access_denied kind=%s execution_id=%s caller_tenant_id=%s",
            kind,
            execution_id,
            caller.tenant_id,
        )
        raise AccessDeniedError("Access denied")

    async def _entity_lineage(
        self, session: AsyncSession, kind: str, entity_id: str, caller: Caller
    ) -> ServiceResult[EntityLineage]:
        entity = await entities_repo.get_lineage_entity(session, kind=kind, entity_id=entity_id)
        if entity is None:
            return ServiceResult.failure(NotFoundError(f"{kind.capitalize()} not found"))
        if not caller.can_access(entity.tenant_id):
            logger.warning(
                "entity_lineage_access_denied kind=%s entity_id=%s caller_tenant_id=%s",
                kind,
                entity_id,
                caller.tenant_id,
            )
            return ServiceResult.failure(AccessDeniedError("Access denied"))

        # Entities created outside a workflow run, or whose run is gone, have no lineage.
        lineage: Lineage | None = None
        if entity.workflow_execution_id:
            execution = await executions_repo.get_execution(session, entity.workflow_execution_id)
            if execution is not None and execution.tenant_id == entity.tenant_id:
                workflow = await executions_repo.get_workflow(session, execution.workflow_id)
                if workflow is not None and workflow.tenant_id == entity.tenant_id:
                    lineage = await self._assemble_lineage(session, execution, workflow)
        return ServiceResult.success(EntityLineage(kind=kind, entity=entity, lineage=lineage))

    async def _assemble_lineage(
        self, session: AsyncSession, execution: WorkflowExecution, workflow: Workflow
    ) -> Lineage:
        # Everything is read in the execution's own tenant, whoever is asking.
        tenant_id = execution.tenant_id
        created: dict[str, list[Any]] = {}
        for kind in entities_repo.LINEAGE_KINDS:
            created[kind] = await entities_repo.list_created_by_execution(
                session, kind=kind, execution_id=execution.id, tenant_id=tenant_id
            )

        signal: WorkflowSignal | None = None
        if execution.trigger_signal_id:
            candidate = await signals_repo.get_signal(session, execution.trigger_signal_id)
            if candidate is not None and candidate.tenant_id == tenant_id:
                signal = candidate

        events = await executions_repo.list_events(session, execution_id=execution.id, tenant_id=tenant_id)
        return Lineage(
            execution=execution,
            workflow=workflow,
            signal=signal,
            events=events,
            created_entities=created,
        )
