from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from signalflow.apps.api.deps import require_role
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.persistence.db import pool_stats
from signalflow.services.telemetry import (
    availability,
    counters_snapshot,
    external_latency_by_integration,
    p95_latency,
)


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class MetricsResponse(BaseModel):
    window_s: int
    availability: float | None
    p95_latency_ms: float | None
    signals_p95_latency_ms: float | None
    external_latency: dict[str, Any]
    counters: dict[str, int]
    db_pool: dict[str, int | None]


@router.get("/metrics", response_model=SuccessEnvelope[MetricsResponse])
async def ops_metrics(
    request: Request,
    window_s: int = Query(default=300, ge=10, le=86400),
    _caller: Caller = Depends(require_role("super_operator")),
) -> dict:
    payload = MetricsResponse(
        window_s=window_s,
        availability=availability(window_s),
        p95_latency_ms=p95_latency(window_s),
        signals_p95_latency_ms=p95_latency(window_s, path_prefix="/v1/signals"),
        external_latency=external_latency_by_integration(window_s),
        counters=counters_snapshot(),
        db_pool=pool_stats(),
    )
    return success_response(request=request, data=payload)
