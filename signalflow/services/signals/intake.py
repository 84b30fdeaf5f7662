from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.core.config import get_settings
from signalflow.core.errors import (
    ForbiddenError,
    InvalidPayloadError,
    NotFoundError,
    SignalflowError,
    ValidationError,
)
from signalflow.domain.caller import Caller
from signalflow.domain.models import WorkflowSignal
from signalflow.domain.results import ServiceResult
from signalflow.persistence.repos import signals as signals_repo
from signalflow.services.audit import AuditRecord, AuditSink, emit_audit
from signalflow.services.routing.router import SignalRouter, TriggeredWorkflow
from signalflow.services.signals import adapters
from signalflow.services.signals.normalizer import compute_dedup_key
from signalflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

SIGNAL_STATUSES = ("pending", "processed", "failed")


@dataclass(frozen=True)
class IngestionOutcome:
    signal: WorkflowSignal
    is_duplicate: bool
    matching_route_count: int = 0
    workflows_triggered: list[TriggeredWorkflow] = field(default_factory=list)


class SignalIntakeService:
    def __init__(self, router: SignalRouter, *, audit_sink: AuditSink | None = None) -> None:
        self._router = router
        self._audit_sink = audit_sink

    def supported_sources(self) -> list[str]:
        return adapters.supported_sources()

    async def ingest(
        self,
        session: AsyncSession,
        *,
        tenant_id: str | None,
        source: str,
        payload: Any,
        client_id: str | None = None,
        caller: Caller | None = None,
        request_id: str | None = None,
    ) -> ServiceResult[IngestionOutcome]:
        try:
            if not tenant_id:
                raise ForbiddenError("Tenant context required to ingest signals")
            adapter = adapters.get_adapter(source or "")
            if not isinstance(payload, dict) or not payload:
                raise InvalidPayloadError(
                    "Signal payload must be a non-empty object",
                    errors=[{"field": "payload", "message": "expected a non-empty object"}],
                )
            normalized = adapter.normalize(payload)
        except SignalflowError as exc:
            logger.info("signal_ingest_rejected tenant_id=%s source=%s code=%s", tenant_id, source, exc.code)
            return ServiceResult.failure(exc)

        dedup_key = compute_dedup_key(tenant_id, adapter.source, normalized.signal_type, normalized.data)
        metadata = {**normalized.metadata, "ingested_at": datetime.now(timezone.utc).isoformat()}
        signal, created = await signals_repo.insert_or_get(
            session,
            tenant_id=tenant_id,
            source=adapter.source,
            signal_type=normalized.signal_type,
            payload=normalized.data,
            metadata=metadata,
            urgency=normalized.urgency,
            dedup_key=dedup_key,
            client_id=client_id,
        )

        if not created:
            # Duplicates return the stored row untouched and never re-trigger workflows.
            increment_counter("signals_duplicate_total")
            logger.info(
                "signal_duplicate tenant_id=%s source=%s signal_id=%s", tenant_id, adapter.source, signal.id
            )
            outcome = IngestionOutcome(signal=signal, is_duplicate=True)
            self._audit(caller, tenant_id, "signals.ingested", signal, request_id, {"is_duplicate": True})
            return ServiceResult.success(outcome, status=200)

        increment_counter("signals_ingested_total")
        outcome = await self._process(session, signal)
        self._audit(
            caller,
            tenant_id,
            "signals.ingested",
            signal,
            request_id,
            {"is_duplicate": False, "workflows_triggered": len(outcome.workflows_triggered)},
        )
        return ServiceResult.success(outcome, status=201)

    async def retry(
        self,
        session: AsyncSession,
        signal_id: str,
        caller: Caller,
        *,
        request_id: str | None = None,
    ) -> ServiceResult[IngestionOutcome]:
        try:
            signal = await self._load_visible(session, signal_id, caller)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)

        # Persist the retry bookkeeping before routing so a failed pass still counts.
        signals_repo.mark_retrying(signal)
        await session.commit()
        increment_counter("signals_retried_total")
        logger.info(
            "signal_retry tenant_id=%s signal_id=%s retry_count=%s", signal.tenant_id, signal.id, signal.retry_count
        )
        outcome = await self._process(session, signal)
        self._audit(
            caller,
            signal.tenant_id,
            "signals.retried",
            signal,
            request_id,
            {"retry_count": signal.retry_count, "workflows_triggered": len(outcome.workflows_triggered)},
        )
        return ServiceResult.success(outcome, status=200)

    async def get_signal(
        self, session: AsyncSession, signal_id: str, caller: Caller
    ) -> ServiceResult[WorkflowSignal]:
        try:
            signal = await self._load_visible(session, signal_id, caller)
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        return ServiceResult.success(signal)

    async def list_signals(
        self,
        session: AsyncSession,
        caller: Caller,
        *,
        status: str | None = None,
        source: str | None = None,
        limit: int | None = None,
    ) -> ServiceResult[list[WorkflowSignal]]:
        settings = get_settings()
        try:
            if not caller.tenant_id:
                raise ForbiddenError("Tenant context required to list signals")
            if status is not None and status not in SIGNAL_STATUSES:
                raise ValidationError(
                    f"Invalid status: {status}",
                    errors=[{"field": "status", "message": f"expected one of {', '.join(SIGNAL_STATUSES)}"}],
                )
        except SignalflowError as exc:
            return ServiceResult.failure(exc)
        resolved_limit = min(max(1, limit or settings.signal_list_default_limit), settings.signal_list_max_limit)
        rows = await signals_repo.list_signals(
            session, tenant_id=caller.tenant_id, status=status, source=source, limit=resolved_limit
        )
        return ServiceResult.success(rows)

    async def _load_visible(self, session: AsyncSession, signal_id: str, caller: Caller) -> WorkflowSignal:
        if not caller.tenant_id and not caller.is_super_operator:
            raise ForbiddenError("Tenant context required")
        signal = await signals_repo.get_signal(session, signal_id)
        # Foreign-tenant signals are indistinguishable from missing ones.
        if signal is None or not caller.can_access(signal.tenant_id):
            raise NotFoundError(f"Signal not found: {signal_id}")
        return signal

    async def _process(self, session: AsyncSession, signal: WorkflowSignal) -> IngestionOutcome:
        signal_id = signal.id
        try:
            routing = await self._router.route_signal(session, signal)
            signals_repo.mark_processed(signal)
            await session.commit()
        except Exception as exc:
            # Drop any partially triggered executions, then record the failure on the signal itself.
            await session.rollback()
            stored = await signals_repo.get_signal(session, signal_id)
            if stored is not None:
                signals_repo.mark_failed(stored, str(exc) or type(exc).__name__)
                await session.commit()
            increment_counter("signals_failed_total")
            logger.warning("signal_processing_failed signal_id=%s", signal_id, exc_info=exc)
            raise
        return IngestionOutcome(
            signal=signal,
            is_duplicate=False,
            matching_route_count=len(routing.matching_routes),
            workflows_triggered=routing.triggered,
        )

    def _audit(
        self,
        caller: Caller | None,
        tenant_id: str,
        event_type: str,
        signal: WorkflowSignal,
        request_id: str | None,
        metadata: dict[str, Any],
    ) -> None:
        emit_audit(
            AuditRecord(
                tenant_id=tenant_id,
                actor_id=caller.actor_id if caller else None,
                actor_role=caller.role if caller else None,
                actor_type="user" if caller else "system",
                event_type=event_type,
                resource_type="workflow_signal",
                resource_id=signal.id,
                request_id=request_id,
                metadata={"source": signal.source, "signal_type": signal.signal_type, **metadata},
            ),
            sink=self._audit_sink,
        )
