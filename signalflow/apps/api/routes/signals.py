from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, get_intake_service, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES, ENGINE_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.domain.models import WorkflowSignal
from signalflow.services.audit import get_request_id
from signalflow.services.signals.intake import IngestionOutcome, SignalIntakeService


router = APIRouter(prefix="/signals", tags=["signals"], responses=DEFAULT_ERROR_RESPONSES)


class IngestRequest(BaseModel):
    source: str = Field(min_length=1)
    # Left untyped so non-object payloads reach the intake service and get its error code.
    payload: Any = None
    client_id: str | None = None

    # Reject unknown fields so tenant_id cannot be supplied in the payload.
    model_config = {"extra": "forbid"}


class SignalResponse(BaseModel):
    id: str
    tenant_id: str
    source: str
    signal_type: str
    urgency: str
    status: str
    payload: dict[str, Any]
    metadata: dict[str, Any] | None
    client_id: str | None
    dedup_key: str
    retry_count: int
    last_error: str | None
    processed_at: str | None
    created_at: str | None


class TriggeredWorkflowResponse(BaseModel):
    route_id: str
    workflow_id: str
    execution_id: str


class IngestResponse(BaseModel):
    signal: SignalResponse
    is_duplicate: bool
    matching_route_count: int
    workflows_triggered: list[TriggeredWorkflowResponse]


class SourcesResponse(BaseModel):
    sources: list[str]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def signal_to_response(signal: WorkflowSignal) -> SignalResponse:
    return SignalResponse(
        id=signal.id,
        tenant_id=signal.tenant_id,
        source=signal.source,
        signal_type=signal.signal_type,
        urgency=signal.urgency,
        status=signal.status,
        payload=signal.payload_json or {},
        metadata=signal.metadata_json,
        client_id=signal.client_id,
        dedup_key=signal.dedup_key,
        retry_count=signal.retry_count or 0,
        last_error=signal.last_error,
        processed_at=_iso(signal.processed_at),
        created_at=_iso(signal.created_at),
    )


def _outcome_to_response(outcome: IngestionOutcome) -> IngestResponse:
    return IngestResponse(
        signal=signal_to_response(outcome.signal),
        is_duplicate=outcome.is_duplicate,
        matching_route_count=outcome.matching_route_count,
        workflows_triggered=[
            TriggeredWorkflowResponse(
                route_id=item.route_id, workflow_id=item.workflow_id, execution_id=item.execution_id
            )
            for item in outcome.workflows_triggered
        ],
    )


@router.post(
    "/ingest",
    status_code=201,
    response_model=SuccessEnvelope[IngestResponse],
    responses=ENGINE_ERROR_RESPONSES,
)
async def ingest_signal(
    payload: IngestRequest,
    request: Request,
    response: Response,
    caller: Caller = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    service: SignalIntakeService = Depends(get_intake_service),
) -> dict:
    # Tenant comes from the caller's identity headers, never from the body.
    result = await service.ingest(
        db,
        tenant_id=caller.tenant_id,
        source=payload.source,
        payload=payload.payload,
        client_id=payload.client_id,
        caller=caller,
        request_id=get_request_id(request),
    )
    raise_for_result(result)
    # Duplicates answer 200 so clients can tell replays from new signals.
    response.status_code = result.status
    return success_response(request=request, data=_outcome_to_response(result.unwrap()))


@router.get("/sources", response_model=SuccessEnvelope[SourcesResponse])
async def list_sources(
    request: Request,
    _caller: Caller = Depends(require_role("reader")),
    service: SignalIntakeService = Depends(get_intake_service),
) -> dict:
    return success_response(request=request, data=SourcesResponse(sources=service.supported_sources()))


@router.get("", response_model=SuccessEnvelope[list[SignalResponse]])
async def list_signals(
    request: Request,
    status: str | None = Query(default=None),
    source: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: SignalIntakeService = Depends(get_intake_service),
) -> dict:
    result = await service.list_signals(db, caller, status=status, source=source, limit=limit)
    raise_for_result(result)
    return success_response(request=request, data=[signal_to_response(row) for row in result.unwrap()])


@router.get("/{signal_id}", response_model=SuccessEnvelope[SignalResponse])
async def get_signal(
    signal_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: SignalIntakeService = Depends(get_intake_service),
) -> dict:
    result = await service.get_signal(db, signal_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=signal_to_response(result.unwrap()))


@router.post(
    "/{signal_id}/retry",
    response_model=SuccessEnvelope[IngestResponse],
    responses=ENGINE_ERROR_RESPONSES,
)
async def retry_signal(
    signal_id: str,
    request: Request,
    caller: Caller = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    service: SignalIntakeService = Depends(get_intake_service),
) -> dict:
    result = await service.retry(db, signal_id, caller, request_id=get_request_id(request))
    raise_for_result(result)
    return success_response(request=request, data=_outcome_to_response(result.unwrap()))
