from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from signalflow.core.errors import WorkflowEngineError
from signalflow.domain.models import WorkflowEvent, WorkflowExecution, WorkflowSignal
from signalflow.persistence.db import SessionLocal
from signalflow.services.audit import AuditRecord, drain_pending_audits
from signalflow.services.routing.router import SignalRouter
from signalflow.services.signals.intake import SignalIntakeService
from signalflow.services.workflow_engine import EVENT_TRIGGERED, DatabaseWorkflowEngine
from signalflow.services.telemetry import counters_snapshot
from signalflow.tests.utils.seed import caller_for, seed_route, seed_workflow


DEAL_WON = {"dealId": "D-100", "dealStage": "closed_won", "amount": 25000}


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def record(self, record: AuditRecord) -> None:
        self.records.append(record)


class ExplodingEngine:
    async def trigger(self, session, *, workflow_id, signal, payload):
        raise WorkflowEngineError("engine offline")


def _service(engine=None, sink=None) -> SignalIntakeService:
    return SignalIntakeService(SignalRouter(engine or DatabaseWorkflowEngine()), audit_sink=sink)


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _seed_deal_route(session, tenant_id: str = "agency-1"):
    workflow = await seed_workflow(session, tenant_id=tenant_id)
    await seed_route(
        session,
        tenant_id=tenant_id,
        workflow_id=workflow.id,
        signal_type="deal_stage_change",
        match_predicate=[{"path": "dealStage", "operator": "eq", "value": "closed_won"}],
    )
    return workflow


@pytest.mark.asyncio
async def test_closed_won_deal_triggers_once(session) -> None:
    workflow = await _seed_deal_route(session)
    sink = RecordingSink()
    service = _service(sink=sink)

    first = await service.ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
    assert first.ok and first.status == 201
    outcome = first.unwrap()
    assert outcome.is_duplicate is False
    assert outcome.matching_route_count == 1
    assert [item.workflow_id for item in outcome.workflows_triggered] == [workflow.id]
    assert outcome.signal.status == "processed"
    assert outcome.signal.urgency == "high"

    execution = await session.get(WorkflowExecution, outcome.workflows_triggered[0].execution_id)
    assert execution.trigger_signal_id == outcome.signal.id
    assert execution.trigger_payload_json == DEAL_WON
    events = (await session.execute(select(WorkflowEvent))).scalars().all()
    assert [event.event_type for event in events] == [EVENT_TRIGGERED]

    # Replaying the same event with reordered keys is a duplicate and triggers nothing.
    replay = await service.ingest(
        session, tenant_id="agency-1", source="crm", payload=dict(reversed(list(DEAL_WON.items())))
    )
    assert replay.ok and replay.status == 200
    assert replay.unwrap().is_duplicate is True
    assert replay.unwrap().signal.id == outcome.signal.id
    assert replay.unwrap().workflows_triggered == []
    assert await _count(session, WorkflowSignal) == 1
    assert await _count(session, WorkflowExecution) == 1

    await drain_pending_audits()
    assert [record.metadata["is_duplicate"] for record in sink.records] == [False, True]
    assert counters_snapshot()["signals_duplicate_total"] == 1


@pytest.mark.asyncio
async def test_concurrent_replays_create_one_signal_and_one_run(session) -> None:
    await _seed_deal_route(session)
    service = _service()

    async def _ingest_in_own_session():
        async with SessionLocal() as own_session:
            result = await service.ingest(own_session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
            return result.unwrap().is_duplicate

    flags = await asyncio.gather(*(_ingest_in_own_session() for _ in range(3)))

    assert sorted(flags) == [False, True, True]
    assert await _count(session, WorkflowSignal) == 1
    assert await _count(session, WorkflowExecution) == 1


@pytest.mark.asyncio
async def test_same_payload_in_other_tenant_is_not_a_duplicate(session) -> None:
    service = _service()
    first = await service.ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
    second = await service.ingest(session, tenant_id="agency-2", source="crm", payload=DEAL_WON)
    assert first.status == second.status == 201
    assert first.unwrap().signal.dedup_key != second.unwrap().signal.dedup_key


@pytest.mark.asyncio
async def test_no_matching_route_is_still_processed(session) -> None:
    await _seed_deal_route(session)
    result = await _service().ingest(
        session, tenant_id="agency-1", source="crm", payload={"dealId": "D-2", "dealStage": "proposal"}
    )
    outcome = result.unwrap()
    assert outcome.matching_route_count == 0
    assert outcome.signal.status == "processed"
    assert await _count(session, WorkflowExecution) == 0


@pytest.mark.asyncio
async def test_routes_from_other_tenants_never_fire(session) -> None:
    await _seed_deal_route(session, tenant_id="agency-2")
    result = await _service().ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
    assert result.unwrap().workflows_triggered == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("tenant_id", "source", "payload", "status", "code"),
    [
        (None, "crm", DEAL_WON, 403, "TENANT_CONTEXT_REQUIRED"),
        ("agency-1", "salesforce", DEAL_WON, 400, "UNSUPPORTED_SOURCE"),
        ("agency-1", "crm", {}, 400, "INVALID_PAYLOAD"),
        ("agency-1", "crm", ["not", "an", "object"], 400, "INVALID_PAYLOAD"),
        ("agency-1", "internal", {"type": "x", "urgency": "panic", "data": {"a": 1}}, 400, "INVALID_PAYLOAD"),
    ],
)
async def test_rejected_ingest_writes_nothing(session, tenant_id, source, payload, status, code) -> None:
    result = await _service().ingest(session, tenant_id=tenant_id, source=source, payload=payload)
    assert not result.ok
    assert (result.status, result.code) == (status, code)
    assert await _count(session, WorkflowSignal) == 0


@pytest.mark.asyncio
async def test_engine_failure_marks_signal_failed(session) -> None:
    await _seed_deal_route(session)
    service = _service(engine=ExplodingEngine())

    with pytest.raises(WorkflowEngineError):
        await service.ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)

    signal = (await session.execute(select(WorkflowSignal))).scalar_one()
    assert signal.status == "failed"
    assert signal.last_error == "engine offline"
    assert await _count(session, WorkflowExecution) == 0
    assert counters_snapshot()["signals_failed_total"] == 1


@pytest.mark.asyncio
async def test_paused_workflow_is_skipped_and_active_route_still_fires(session) -> None:
    active = await _seed_deal_route(session)
    paused = await seed_workflow(session, tenant_id="agency-1", name="paused", status="paused")
    await seed_route(session, tenant_id="agency-1", workflow_id=paused.id, priority=10)

    result = await _service().ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)

    outcome = result.unwrap()
    assert result.status == 201
    assert outcome.matching_route_count == 2
    assert [item.workflow_id for item in outcome.workflows_triggered] == [active.id]
    assert outcome.signal.status == "processed"
    assert await _count(session, WorkflowExecution) == 1


@pytest.mark.asyncio
async def test_retry_reuses_the_signal_row(session) -> None:
    await _seed_deal_route(session)
    with pytest.raises(WorkflowEngineError):
        await _service(engine=ExplodingEngine()).ingest(
            session, tenant_id="agency-1", source="crm", payload=DEAL_WON
        )
    failed = (await session.execute(select(WorkflowSignal))).scalar_one()

    result = await _service().retry(session, failed.id, caller_for("agency-1", role="editor"))

    outcome = result.unwrap()
    assert outcome.signal.id == failed.id
    assert outcome.signal.status == "processed"
    assert outcome.signal.retry_count == 1
    assert outcome.signal.last_error is None
    assert len(outcome.workflows_triggered) == 1
    assert await _count(session, WorkflowSignal) == 1


@pytest.mark.asyncio
async def test_retry_hides_foreign_signals(session) -> None:
    created = await _service().ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
    signal_id = created.unwrap().signal.id

    foreign = await _service().retry(session, signal_id, caller_for("agency-2"))
    assert (foreign.status, foreign.code) == (404, "NOT_FOUND")
    missing = await _service().retry(session, "nope", caller_for("agency-1"))
    assert missing.status == 404
    operator = await _service().retry(session, signal_id, caller_for(None, role="super_operator"))
    assert operator.ok


@pytest.mark.asyncio
async def test_list_signals_is_tenant_scoped(session) -> None:
    service = _service()
    await service.ingest(session, tenant_id="agency-1", source="crm", payload=DEAL_WON)
    await service.ingest(session, tenant_id="agency-2", source="crm", payload=DEAL_WON)

    rows = (await service.list_signals(session, caller_for("agency-1"), status="processed")).unwrap()
    assert [row.tenant_id for row in rows] == ["agency-1"]

    invalid = await service.list_signals(session, caller_for("agency-1"), status="exploded")
    assert (invalid.status, invalid.code) == (400, "VALIDATION_ERROR")
    no_tenant = await service.list_signals(session, caller_for(None))
    assert no_tenant.status == 403
