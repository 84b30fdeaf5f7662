from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, get_execution_service, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.apps.api.routes.signals import SignalResponse, signal_to_response
from signalflow.domain.caller import Caller
from signalflow.domain.models import Workflow, WorkflowEvent, WorkflowExecution
from signalflow.services.executions import ExecutionTrackingService, Lineage


router = APIRouter(prefix="/workflow-executions", tags=["workflow-executions"], responses=DEFAULT_ERROR_RESPONSES)


class WorkflowExecutionResponse(BaseModel):
    id: str
    tenant_id: str
    workflow_id: str
    trigger_signal_id: str | None
    status: str
    error: str | None
    started_at: str | None
    finished_at: str | None


class WorkflowEventResponse(BaseModel):
    id: int
    execution_id: str
    event_type: str
    step_id: str | None
    payload: dict[str, Any] | None
    occurred_at: str | None


class WorkflowResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    status: str


class LineageResponse(BaseModel):
    execution: WorkflowExecutionResponse
    workflow: WorkflowResponse
    signal: SignalResponse | None
    events: list[WorkflowEventResponse]
    created_entities: dict[str, list[dict[str, Any]]]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _execution_response(execution: WorkflowExecution) -> WorkflowExecutionResponse:
    return WorkflowExecutionResponse(
        id=execution.id,
        tenant_id=execution.tenant_id,
        workflow_id=execution.workflow_id,
        trigger_signal_id=execution.trigger_signal_id,
        status=execution.status,
        error=execution.error,
        started_at=_iso(execution.started_at),
        finished_at=_iso(execution.finished_at),
    )


def _event_response(event: WorkflowEvent) -> WorkflowEventResponse:
    return WorkflowEventResponse(
        id=event.id,
        execution_id=event.execution_id,
        event_type=event.event_type,
        step_id=event.step_id,
        payload=event.payload_json,
        occurred_at=_iso(event.occurred_at),
    )


def _workflow_response(workflow: Workflow) -> WorkflowResponse:
    return WorkflowResponse(id=workflow.id, tenant_id=workflow.tenant_id, name=workflow.name, status=workflow.status)


def entity_to_dict(row: Any) -> dict[str, Any]:
    # Created entities are heterogeneous; expose their mapped columns as plain JSON.
    return jsonable_encoder({column.key: getattr(row, column.key) for column in row.__table__.columns})


def lineage_to_response(lineage: Lineage) -> LineageResponse:
    return LineageResponse(
        execution=_execution_response(lineage.execution),
        workflow=_workflow_response(lineage.workflow),
        signal=signal_to_response(lineage.signal) if lineage.signal else None,
        events=[_event_response(event) for event in lineage.events],
        created_entities={
            kind: [entity_to_dict(row) for row in rows] for kind, rows in lineage.created_entities.items()
        },
    )


@router.get("", response_model=SuccessEnvelope[list[WorkflowExecutionResponse]])
async def list_executions(
    request: Request,
    workflow_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    trigger_signal_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: ExecutionTrackingService = Depends(get_execution_service),
) -> dict:
    result = await service.list_executions(
        db,
        caller,
        workflow_id=workflow_id,
        status=status,
        trigger_signal_id=trigger_signal_id,
        limit=limit,
    )
    raise_for_result(result)
    return success_response(request=request, data=[_execution_response(row) for row in result.unwrap()])


@router.get("/{execution_id}/events", response_model=SuccessEnvelope[list[WorkflowEventResponse]])
async def get_execution_events(
    execution_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: ExecutionTrackingService = Depends(get_execution_service),
) -> dict:
    result = await service.get_events(db, execution_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=[_event_response(event) for event in result.unwrap()])


@router.get("/{execution_id}/lineage", response_model=SuccessEnvelope[LineageResponse])
async def get_execution_lineage(
    execution_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: ExecutionTrackingService = Depends(get_execution_service),
) -> dict:
    result = await service.get_lineage(db, execution_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=lineage_to_response(result.unwrap()))
