from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.config import get_settings
from signalflow.domain.caller import Caller, normalize_role, role_allows
from signalflow.persistence.db import get_session
from signalflow.services.audit import AuditRecord, emit_audit, get_request_id
from signalflow.services.executions import ExecutionTrackingService
from signalflow.services.gates import GateDecisionService
from signalflow.services.routing.router import SignalRouter
from signalflow.services.routing.routes import SignalRouteService
from signalflow.services.signals.intake import SignalIntakeService
from signalflow.services.workflow_engine import DatabaseWorkflowEngine


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_caller(request: Request) -> Caller:
    # Identity headers are set by the upstream gateway after authentication.
    settings = get_settings()
    tenant_id = (request.headers.get(settings.auth_tenant_header) or "").strip() or None
    actor_id = (request.headers.get(settings.auth_actor_header) or "").strip() or None
    role = normalize_role(request.headers.get(settings.auth_role_header))
    return Caller(tenant_id=tenant_id, actor_id=actor_id, role=role)


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def require_role(minimum_role: str):
    # Dependency factory to enforce RBAC at the route level.
    async def _dependency(request: Request, caller: Caller = Depends(get_caller)) -> Caller:
        if not role_allows(role=caller.role, minimum_role=minimum_role):
            logger.info(
                "rbac_forbidden tenant_id=%s actor_id=%s role=%s required=%s",
                caller.tenant_id,
                caller.actor_id,
                caller.role,
                minimum_role,
            )
            emit_audit(
                AuditRecord(
                    tenant_id=caller.tenant_id,
                    actor_id=caller.actor_id,
                    actor_role=caller.role,
                    event_type="rbac.forbidden",
                    outcome="failure",
                    resource_type="rbac",
                    request_id=get_request_id(request),
                    metadata={"path": request.url.path, "method": request.method, "required_role": minimum_role},
                    error_code="AUTH_FORBIDDEN",
                )
            )
            raise _forbidden_error("Insufficient role for this operation")
        return caller

    return _dependency


# Services are stateless apart from their injected collaborators; tests override these providers.


def get_signal_router() -> SignalRouter:
    return SignalRouter(DatabaseWorkflowEngine())


def get_intake_service(router: SignalRouter = Depends(get_signal_router)) -> SignalIntakeService:
    return SignalIntakeService(router)


def get_route_service() -> SignalRouteService:
    return SignalRouteService()


def get_execution_service() -> ExecutionTrackingService:
    return ExecutionTrackingService()


def get_gate_service() -> GateDecisionService:
    return GateDecisionService()
