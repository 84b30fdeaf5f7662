from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from signalflow.apps.api.deps import require_role
from signalflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from signalflow.apps.api.response import SuccessEnvelope, success_response
from signalflow.domain.caller import Caller
from signalflow.services.ai.cache import clear_cache, get_cache_stats
from signalflow.services.audit import AuditRecord, emit_audit, get_request_id


router = APIRouter(prefix="/admin/ai", tags=["ai-admin"], responses=DEFAULT_ERROR_RESPONSES)


class CacheStatsResponse(BaseModel):
    size: int
    keys: list[str]


class CacheClearResponse(BaseModel):
    cleared: int


@router.get("/cache", response_model=SuccessEnvelope[CacheStatsResponse])
async def ai_cache_stats(
    request: Request,
    _caller: Caller = Depends(require_role("super_operator")),
) -> dict:
    stats = await get_cache_stats()
    return success_response(request=request, data=CacheStatsResponse(**stats))


@router.delete("/cache", response_model=SuccessEnvelope[CacheClearResponse])
async def ai_cache_clear(
    request: Request,
    caller: Caller = Depends(require_role("super_operator")),
) -> dict:
    # The cache is process-wide, so clearing it is a platform-level operator action.
    removed = await clear_cache()
    emit_audit(
        AuditRecord(
            tenant_id=caller.tenant_id,
            actor_id=caller.actor_id,
            actor_role=caller.role,
            actor_type="operator",
            event_type="ai_cache.cleared",
            resource_type="ai_cache",
            request_id=get_request_id(request),
            metadata={"cleared": removed},
        )
    )
    return success_response(request=request, data=CacheClearResponse(cleared=removed))
