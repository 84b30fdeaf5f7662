from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, get_execution_service, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.apps.api.routes.workflow_executions import LineageResponse, entity_to_dict, lineage_to_response
from signalflow.domain.caller import Caller
from signalflow.services.executions import EntityLineage, ExecutionTrackingService


router = APIRouter(prefix="/lineage", tags=["lineage"], responses=DEFAULT_ERROR_RESPONSES)


class EntityLineageResponse(BaseModel):
    kind: str
    entity: dict[str, Any]
    # Null when the entity was not created by a workflow run.
    lineage: LineageResponse | None


def _entity_lineage_response(result: EntityLineage) -> EntityLineageResponse:
    return EntityLineageResponse(
        kind=result.kind,
        entity=entity_to_dict(result.entity),
        lineage=lineage_to_response(result.lineage) if result.lineage else None,
    )


@router.get("/tasks/{task_id}", response_model=SuccessEnvelope[EntityLineageResponse])
async def get_task_lineage(
    task_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: ExecutionTrackingService = Depends(get_execution_service),
) -> dict:
    result = await service.get_task_lineage(db, task_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=_entity_lineage_response(result.unwrap()))


@router.get("/projects/{project_id}", response_model=SuccessEnvelope[EntityLineageResponse])
async def get_project_lineage(
    project_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: ExecutionTrackingService = Depends(get_execution_service),
) -> dict:
    result = await service.get_project_lineage(db, project_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=_entity_lineage_response(result.unwrap()))
