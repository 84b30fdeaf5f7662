from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, get_gate_service, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.domain.models import GateDecision
from signalflow.services.audit import get_request_id
from signalflow.services.gates import GateDecisionService


router = APIRouter(prefix="/gate-decisions", tags=["gate-decisions"], responses=DEFAULT_ERROR_RESPONSES)


class GateDecisionResponse(BaseModel):
    id: str
    tenant_id: str
    gate_type: str
    target_type: str
    target_id: str
    decision: str
    rationale: str | None
    actor_id: str | None
    metadata: dict[str, Any] | None
    created_at: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _to_response(decision: GateDecision) -> GateDecisionResponse:
    return GateDecisionResponse(
        id=decision.id,
        tenant_id=decision.tenant_id,
        gate_type=decision.gate_type,
        target_type=decision.target_type,
        target_id=decision.target_id,
        decision=decision.decision,
        rationale=decision.rationale,
        actor_id=decision.actor_id,
        metadata=decision.metadata_json,
        created_at=_iso(decision.created_at),
    )


# The body is validated by the service so all violations come back in one 400.
@router.post("", status_code=201, response_model=SuccessEnvelope[GateDecisionResponse])
async def record_gate_decision(
    request: Request,
    payload: dict[str, Any] = Body(...),
    caller: Caller = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    service: GateDecisionService = Depends(get_gate_service),
) -> dict:
    result = await service.record_decision(db, caller, payload, request_id=get_request_id(request))
    raise_for_result(result)
    return success_response(request=request, data=_to_response(result.unwrap()))


@router.get("", response_model=SuccessEnvelope[list[GateDecisionResponse]])
async def list_gate_decisions(
    request: Request,
    target_type: str = Query(...),
    target_id: str = Query(...),
    gate_type: str | None = Query(default=None),
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: GateDecisionService = Depends(get_gate_service),
) -> dict:
    result = await service.list_decisions(
        db, caller, target_type=target_type, target_id=target_id, gate_type=gate_type
    )
    raise_for_result(result)
    return success_response(request=request, data=[_to_response(row) for row in result.unwrap()])


@router.get("/latest", response_model=SuccessEnvelope[GateDecisionResponse | None])
async def latest_gate_decision(
    request: Request,
    target_type: str = Query(...),
    target_id: str = Query(...),
    gate_type: str | None = Query(default=None),
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: GateDecisionService = Depends(get_gate_service),
) -> dict:
    result = await service.latest_decision(
        db, caller, target_type=target_type, target_id=target_id, gate_type=gate_type
    )
    raise_for_result(result)
    latest = result.unwrap()
    return success_response(request=request, data=_to_response(latest) if latest else None)
