from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.errors import (
    AccessDeniedError,
    ForbiddenError,
    SignalflowError,
    validation_error_from,
)
from signalflow.domain.caller import Caller
from signalflow.domain.models import GateDecision
from signalflow.domain.results import ServiceResult
from signalflow.persistence.repos import entities as entities_repo
from signalflow.persistence.repos import gates as gates_repo
from signalflow.services.audit import AuditRecord, AuditSink, emit_audit


logger = logging.getLogger(__name__)

TargetType = Literal[
    "opportunity_artifact",
    "initiative",
    "execution_output",
    "outcome_review",
    "learning_artifact",
]


class GateDecisionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    gate_type: str = Field(min_length=1, max_length=100)
    decision: Literal["approve", "reject", "discuss"]
    target_type: TargetType
    target_id: str = Field(min_length=1)
    rationale: str | None = Field(default=None, max_length=5000)
    metadata: dict[str, Any] | None = None


Verifier = Callable[[AsyncSession, str, str], Awaitable[bool]]


async def _initiative_owned_by(session: AsyncSession, tenant_id: str, initiative_id: str | None) -> bool:
    # Initiatives have no tenant column; ownership is the owning client's tenant.
    if not initiative_id:
        return False
    initiative = await entities_repo.get_initiative(session, initiative_id)
    if initiative is None:
        return False
    client = await entities_repo.get_client(session, initiative.client_id)
    return client is not None and client.tenant_id == tenant_id


async def _verify_opportunity_artifact(session: AsyncSession, tenant_id: str, target_id: str) -> bool:
    artifact = await entities_repo.get_opportunity_artifact(session, target_id)
    return artifact is not None and artifact.tenant_id == tenant_id


async def _verify_initiative(session: AsyncSession, tenant_id: str, target_id: str) -> bool:
    return await _initiative_owned_by(session, tenant_id, target_id)


async def _verify_execution_output(session: AsyncSession, tenant_id: str, target_id: str) -> bool:
    output = await entities_repo.get_execution_output(session, target_id)
    if output is None:
        return False
    return await _initiative_owned_by(session, tenant_id, output.initiative_id)


async def _verify_outcome_review(session: AsyncSession, tenant_id: str, target_id: str) -> bool:
    review = await entities_repo.get_outcome_review(session, target_id)
    if review is None:
        return False
    return await _initiative_owned_by(session, tenant_id, review.initiative_id)


async def _verify_learning_artifact(session: AsyncSession, tenant_id: str, target_id: str) -> bool:
    learning = await entities_repo.get_learning_artifact(session, target_id)
    if learning is None:
        return False
    return await _initiative_owned_by(session, tenant_id, learning.initiative_id)


TENANT_VERIFIERS: dict[str, Verifier] = {
    "opportunity_artifact": _verify_opportunity_artifact,
    "initiative": _verify_initiative,
    "execution_output": _verify_execution_output,
    "outcome_review": _verify_outcome_review,
    "learning_artifact": _verify_learning_artifact,
}


async def verify_target_tenant(session: AsyncSession, tenant_id: str, target_type: str, target_id: str) -> bool:
    # Unknown target types fail closed like any missing link.
    verifier = TENANT_VERIFIERS.get(target_type)
    if verifier is None:
        return False
    return await verifier(session, tenant_id, target_id)


class GateDecisionService:
    def __init__(self, *, audit_sink: AuditSink | None = None) -> None:
        self._audit_sink = audit_sink

    async def record_decision(
        self,
        session: AsyncSession,
        caller: Caller,
        payload: Any,
        *,
        request_id: str | None = None,
    ) -> ServiceResult[GateDecision]:
        try:
            if not caller.tenant_id:
                raise ForbiddenError("Tenant context required")
            try:
                data = GateDecisionRequest.model_validate(payload)
            except PydanticValidationError as exc:
                raise validation_error_from(exc, "Invalid payload") from exc
            if not await verify_target_tenant(session, caller.tenant_id, data.target_type, data.target_id):
                # Missing and foreign targets look the same from outside.
                logger.warning(
                    "gate_target_verification_failed tenant_id=%s target_type=%s target_id=%s",
                    caller.tenant_id,
                    data.target_type,
                    data.target_id,
                )
                raise AccessDeniedError("Access denied")
        except SignalflowError as exc:
            return ServiceResult.failure(exc)

        decision = await gates_repo.insert_decision(
            session,
            tenant_id=caller.tenant_id,
            gate_type=data.gate_type,
            target_type=data.target_type,
            target_id=data.target_id,
            decision=data.decision,
            rationale=data.rationale,
            actor_id=caller.actor_id,
            metadata=data.metadata,
        )
        logger.info(
            "gate_decision_recorded tenant_id=%s decision_id=%s target_type=%s decision=%s",
            decision.tenant_id,
            decision.id,
            decision.target_type,
            decision.decision,
        )
        emit_audit(
            AuditRecord(
                tenant_id=caller.tenant_id,
                actor_id=caller.actor_id,
                actor_role=caller.role,
                event_type="gate_decisions.recorded",
                resource_type="gate_decision",
                resource_id=decision.id,
                request_id=request_id,
                metadata={
                    "gate_type": data.gate_type,
                    "decision": data.decision,
                    "target_type": data.target_type,
                    "target_id": data.target_id,
                    "metadata": data.metadata or {},
                },
            ),
            sink=self._audit_sink,
        )
        return ServiceResult.success(decision, status=201)

    async def list_decisions(
        self,
        session: AsyncSession,
        caller: Caller,
        *,
        target_type: str,
        target_id: str,
        gate_type: str | None = None,
    ) -> ServiceResult[list[GateDecision]]:
        if not caller.tenant_id:
            return ServiceResult.failure(ForbiddenError("Tenant context required"))
        rows = await gates_repo.list_decisions(
            session,
            tenant_id=caller.tenant_id,
            target_type=target_type,
            target_id=target_id,
            gate_type=gate_type,
        )
        return ServiceResult.success(rows)

    async def latest_decision(
        self,
        session: AsyncSession,
        caller: Caller,
        *,
        target_type: str,
        target_id: str,
        gate_type: str | None = None,
    ) -> ServiceResult[GateDecision | None]:
        history = await self.list_decisions(
            session, caller, target_type=target_type, target_id=target_id, gate_type=gate_type
        )
        if not history.ok:
            return ServiceResult(
                ok=False, status=history.status, error=history.error, code=history.code, errors=history.errors
            )
        rows = history.data or []
        return ServiceResult.success(rows[0] if rows else None)
