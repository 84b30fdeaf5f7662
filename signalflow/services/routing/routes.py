from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.errors import (
    AccessDeniedError,
    ForbiddenError,
    NotFoundError,
    SignalflowError,
    ValidationError,
    validation_error_from,
)
from signalflow.domain.caller import Caller
from signalflow.domain.models import SignalRoute
from signalflow.domain.results import ServiceResult
from signalflow.persistence.repos import executions as executions_repo
from signalflow.persistence.repos import routes as routes_repo
from signalflow.services.audit import AuditRecord, AuditSink, emit_audit
from signalflow.services.signals.adapters import URGENCIES, supported_sources


logger = logging.getLogger(__name__)


def _check_urgencies(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    unknown = [item for item in value if item not in URGENCIES]
    if unknown:
        raise ValueError(f"unknown urgency values: {', '.join(unknown)}")
    return value


class PredicateCondition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1)
    operator: Literal["eq", "neq", "contains", "gt", "gte", "lt", "lte", "in", "exists"]
    value: Any = None


class SignalRouteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workflow_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    source: str
    signal_type: str | None = None
    urgency_filter: list[str] | None = None
    match_predicate: list[PredicateCondition] | None = None
    enabled: bool = True
    priority: int = 0

    @field_validator("source")
    @classmethod
    def _known_source(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in supported_sources():
            raise ValueError(f"unsupported source; expected one of {', '.join(supported_sources())}")
        return lowered

    @field_validator("urgency_filter")
    @classmethod
    def _known_urgencies(cls, value: list[str] | None) -> list[str] | None:
        return _check_urgencies(value)


class SignalRouteUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workflow_id: str | None = Field(default=None, min_length=1)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    signal_type: str | None = None
    urgency_filter: list[str] | None = None
    match_predicate: list[PredicateCondition] | None = None
    enabled: bool | None = None
    priority: int | None = None

    @field_validator("urgency_filter")
    @classmethod
    def _known_urgencies(cls, value: list[str] | None) -> list[str] | None:
        return _check_urgencies(value)


# Columns that may be explicitly cleared to null on update.
_NULLABLE_FIELDS = {"description", "signal_type", "urgency_filter", "match_predicate"}


class SignalRouteService:
    def __init__(self, *, audit_sink: AuditSink | None = None) -> None:
        self._audit_sink = audit_sink

    async def list_routes(
        self, session: AsyncSession, caller: Caller, *, source: str | None = None
    ) -> ServiceResult[list[SignalRoute]]:
        if not caller.tenant_id:
            return ServiceResult.failure(ForbiddenError("Tenant context required to list routes"))
        rows = await routes_repo.list_routes(session, tenant_id=caller.tenant_id, source=source)
        return ServiceResult.success(rows)

    async def get_route(self, session: AsyncSession, route_id: str, caller: Caller) -> ServiceResult[SignalRoute]:
        try:
            route = await self._load(session, route_id, caller)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        return ServiceResult.success(route)

    async def create_route(
        self,
        session: AsyncSession,
        caller: Caller,
        payload: dict[str, Any],
        *,
        request_id: str | None = None,
    ) -> ServiceResult[SignalRoute]:
        try:
            if not caller.tenant_id:
                raise ForbiddenError("Tenant context required to create routes")
            try:
                data = SignalRouteCreate.model_validate(payload)
            except PydanticValidationError as exc:
                raise validation_error_from(exc, "Invalid signal route") from exc
            await self._require_workflow(session, caller.tenant_id, data.workflow_id)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)

        values = data.model_dump()
        route = await routes_repo.create_route(session, tenant_id=caller.tenant_id, values=values)
        logger.info("signal_route_created tenant_id=%s route_id=%s", route.tenant_id, route.id)
        self._audit(caller, route, "signal_routes.created", request_id)
        return ServiceResult.success(route, status=201)

    async def update_route(
        self,
        session: AsyncSession,
        route_id: str,
        caller: Caller,
        payload: dict[str, Any],
        *,
        request_id: str | None = None,
    ) -> ServiceResult[SignalRoute]:
        try:
            route = await self._load(session, route_id, caller)
            try:
                data = SignalRouteUpdate.model_validate(payload)
            except PydanticValidationError as exc:
                raise validation_error_from(exc, "Invalid signal route") from exc
            values = data.model_dump(exclude_unset=True)
            for key, value in list(values.items()):
                if value is None and key not in _NULLABLE_FIELDS:
                    raise ValidationError(
                        f"{key} cannot be null", errors=[{"field": key, "message": "cannot be null"}]
                    )
            if values.get("workflow_id"):
                # The route keeps its tenant; a new workflow must belong to that same tenant.
                await self._require_workflow(session, route.tenant_id, values["workflow_id"])
        except SignalflowError as exc:
            return ServiceResult.failure(exc)

        route = await routes_repo.update_route(session, route, values)
        logger.info("signal_route_updated tenant_id=%s route_id=%s", route.tenant_id, route.id)
        self._audit(caller, route, "signal_routes.updated", request_id, {"fields": sorted(values)})
        return ServiceResult.success(route)

    async def delete_route(
        self,
        session: AsyncSession,
        route_id: str,
        caller: Caller,
        *,
        request_id: str | None = None,
    ) -> ServiceResult[str]:
        try:
            route = await self._load(session, route_id, caller)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        tenant_id = route.tenant_id
        await routes_repo.delete_route(session, route)
        logger.info("signal_route_deleted tenant_id=%s route_id=%s", tenant_id, route_id)
        emit_audit(
            AuditRecord(
                tenant_id=tenant_id,
                actor_id=caller.actor_id,
                actor_role=caller.role,
                event_type="signal_routes.deleted",
                resource_type="signal_route",
                resource_id=route_id,
                request_id=request_id,
            ),
            sink=self._audit_sink,
        )
        return ServiceResult.success(route_id)

    async def _load(self, session: AsyncSession, route_id: str, caller: Caller) -> SignalRoute:
        if not caller.tenant_id and not caller.is_super_operator:
            raise ForbiddenError("Tenant context required")
        route = await routes_repo.get_route(session, route_id)
        if route is None:
            raise NotFoundError(f"Signal route not found: {route_id}")
        if not caller.can_access(route.tenant_id):
            raise AccessDeniedError("Access denied to signal route")
        return route

    async def _require_workflow(self, session: AsyncSession, tenant_id: str, workflow_id: str) -> None:
        workflow = await executions_repo.get_workflow(session, workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        if workflow.tenant_id != tenant_id:
            logger.warning(
                "signal_route_workflow_tenant_mismatch tenant_id=%s workflow_id=%s", tenant_id, workflow_id
            )
            raise AccessDeniedError("Workflow does not belong to this tenant")

    def _audit(
        self,
        caller: Caller,
        route: SignalRoute,
        event_type: str,
        request_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        emit_audit(
            AuditRecord(
                tenant_id=route.tenant_id,
                actor_id=caller.actor_id,
                actor_role=caller.role,
                event_type=event_type,
                resource_type="signal_route",
                resource_id=route.id,
                request_id=request_id,
                metadata={"workflow_id": route.workflow_id, "source": route.source, **(metadata or {})},
            ),
            sink=self._audit_sink,
        )
