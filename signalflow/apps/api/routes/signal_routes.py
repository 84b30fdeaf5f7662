from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.apps.api.deps import get_db, get_route_service, require_role
from signalflow.apps.api.errors import raise_for_result
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.domain.models import SignalRoute
from signalflow.services.audit import get_request_id
from signalflow.services.routing.routes import SignalRouteService


router = APIRouter(prefix="/signal-routes", tags=["signal-routes"], responses=DEFAULT_ERROR_RESPONSES)


class SignalRouteResponse(BaseModel):
    id: str
    tenant_id: str
    workflow_id: str
    name: str
    description: str | None
    source: str
    signal_type: str | None
    urgency_filter: list[str] | None
    match_predicate: list[dict[str, Any]] | None
    enabled: bool
    priority: int
    created_at: str | None
    updated_at: str | None


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _to_response(route: SignalRoute) -> SignalRouteResponse:
    return SignalRouteResponse(
        id=route.id,
        tenant_id=route.tenant_id,
        workflow_id=route.workflow_id,
        name=route.name,
        description=route.description,
        source=route.source,
        signal_type=route.signal_type,
        urgency_filter=route.urgency_filter,
        match_predicate=route.match_predicate,
        enabled=route.enabled,
        priority=route.priority,
        created_at=_iso(route.created_at),
        updated_at=_iso(route.updated_at),
    )


@router.get("", response_model=SuccessEnvelope[list[SignalRouteResponse]])
async def list_signal_routes(
    request: Request,
    source: str | None = Query(default=None),
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: SignalRouteService = Depends(get_route_service),
) -> dict:
    result = await service.list_routes(db, caller, source=source)
    raise_for_result(result)
    return success_response(request=request, data=[_to_response(route) for route in result.unwrap()])


# Bodies are validated by the service so every violation is reported together.
@router.post("", status_code=201, response_model=SuccessEnvelope[SignalRouteResponse])
async def create_signal_route(
    request: Request,
    payload: dict[str, Any] = Body(...),
    caller: Caller = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    service: SignalRouteService = Depends(get_route_service),
) -> dict:
    result = await service.create_route(db, caller, payload, request_id=get_request_id(request))
    raise_for_result(result)
    return success_response(request=request, data=_to_response(result.unwrap()))


@router.get("/{route_id}", response_model=SuccessEnvelope[SignalRouteResponse])
async def get_signal_route(
    route_id: str,
    request: Request,
    caller: Caller = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    service: SignalRouteService = Depends(get_route_service),
) -> dict:
    result = await service.get_route(db, route_id, caller)
    raise_for_result(result)
    return success_response(request=request, data=_to_response(result.unwrap()))


@router.patch("/{route_id}", response_model=SuccessEnvelope[SignalRouteResponse])
async def update_signal_route(
    route_id: str,
    request: Request,
    payload: dict[str, Any] = Body(...),
    caller: Caller = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    service: SignalRouteService = Depends(get_route_service),
) -> dict:
    result = await service.update_route(db, route_id, caller, payload, request_id=get_request_id(request))
    raise_for_result(result)
    return success_response(request=request, data=_to_response(result.unwrap()))


@router.delete("/{route_id}", response_model=SuccessEnvelope[DeletedResponse])
async def delete_signal_route(
    route_id: str,
    request: Request,
    caller: Caller = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    service: SignalRouteService = Depends(get_route_service),
) -> dict:
    result = await service.delete_route(db, route_id, caller, request_id=get_request_id(request))
    raise_for_result(result)
    return success_response(request=request, data=DeletedResponse(id=result.unwrap(), deleted=True))
