from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import SignalRoute, WorkflowSignal
from signalflow.persistence.repos import executions as executions_repo
from signalflow.persistence.repos import routes as routes_repo
from signalflow.services.routing.predicates import evaluate_predicate
from signalflow.services.workflow_engine import WorkflowEngine


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggeredWorkflow:
    route_id: str
    workflow_id: str
    execution_id: str


@dataclass(frozen=True)
class RoutingOutcome:
    matching_routes: list[SignalRoute] = field(default_factory=list)
    triggered: list[TriggeredWorkflow] = field(default_factory=list)


def route_matches(route: SignalRoute, signal: WorkflowSignal) -> bool:
    # Filters compose with AND; an unset filter accepts everything.
    if not route.enabled:
        return False
    if route.tenant_id != signal.tenant_id or route.source != signal.source:
        return False
    if route.signal_type and route.signal_type != signal.signal_type:
        return False
    if route.urgency_filter and (signal.urgency or "normal") not in route.urgency_filter:
        return False
    return evaluate_predicate(route.match_predicate, signal.payload_json)


class SignalRouter:
    def __init__(self, engine: WorkflowEngine) -> None:
        self._engine = engine

    async def find_matching_routes(self, session: AsyncSession, signal: WorkflowSignal) -> list[SignalRoute]:
        # Candidates are already restricted to the signal's tenant and source at query level.
        candidates = await routes_repo.list_candidate_routes(
            session, tenant_id=signal.tenant_id, source=signal.source
        )
        return [route for route in candidates if route_matches(route, signal)]

    async def route_signal(self, session: AsyncSession, signal: WorkflowSignal) -> RoutingOutcome:
        matching = await self.find_matching_routes(session, signal)
        triggered: list[TriggeredWorkflow] = []
        for route in matching:
            if not await self._workflow_is_active(session, route, signal):
                continue
            execution = await self._engine.trigger(
                session,
                workflow_id=route.workflow_id,
                signal=signal,
                payload=dict(signal.payload_json or {}),
            )
            triggered.append(
                TriggeredWorkflow(route_id=route.id, workflow_id=route.workflow_id, execution_id=execution.id)
            )
        logger.info(
            "signal_routed tenant_id=%s signal_id=%s matching_routes=%s triggered=%s",
            signal.tenant_id,
            signal.id,
            len(matching),
            len(triggered),
        )
        return RoutingOutcome(matching_routes=matching, triggered=triggered)

    async def _workflow_is_active(self, session: AsyncSession, route: SignalRoute, signal: WorkflowSignal) -> bool:
        # A paused or deleted workflow skips its route; the rest of the pass still runs.
        workflow = await executions_repo.get_tenant_workflow(
            session, tenant_id=signal.tenant_id, workflow_id=route.workflow_id
        )
        if workflow is not None and workflow.status == "active":
            return True
        logger.info(
            "route_skipped_inactive_workflow tenant_id=%s signal_id=%s route_id=%s workflow_id=%s status=%s",
            signal.tenant_id,
            signal.id,
            route.id,
            route.workflow_id,
            workflow.status if workflow is not None else "missing",
        )
        return False
