from __future__ import annotations

import pytest

from signalflow.core.errors import WorkflowEngineError
from signalflow.domain.models import AiExecution, Project, Task, TaskList
from signalflow.persistence.repos import executions as executions_repo
from signalflow.services.executions import ExecutionTrackingService, lineage_stamp
from signalflow.services.routing.router import SignalRouter
from signalflow.services.signals.intake import SignalIntakeService
from signalflow.services.workflow_engine import (
    EVENT_COMPLETED,
    EVENT_STEP_STARTED,
    EVENT_TRIGGERED,
    DatabaseWorkflowEngine,
)
from signalflow.tests.utils.seed import caller_for, seed_route, seed_workflow


async def _triggered_execution(session, tenant_id: str = "agency-1"):
    workflow = await seed_workflow(session, tenant_id=tenant_id)
    await seed_route(session, tenant_id=tenant_id, workflow_id=workflow.id)
    intake = SignalIntakeService(SignalRouter(DatabaseWorkflowEngine()))
    outcome = (
        await intake.ingest(session, tenant_id=tenant_id, source="crm", payload={"dealId": "D-1", "dealStage": "won"})
    ).unwrap()
    execution_id = outcome.workflows_triggered[0].execution_id
    return workflow, outcome.signal, execution_id


@pytest.mark.asyncio
async def test_lineage_collects_signal_events_and_created_entities(session) -> None:
    engine = DatabaseWorkflowEngine()
    workflow, signal, execution_id = await _triggered_execution(session)
    service = ExecutionTrackingService()
    events = (await service.get_events(session, execution_id, caller_for("agency-1"))).unwrap()
    assert [event.event_type for event in events] == [EVENT_TRIGGERED]

    run = await executions_repo.get_execution(session, execution_id)
    await engine.append_event(session, run, EVENT_STEP_STARTED, step_id="create_project")
    stamp = lineage_stamp(run)
    project = Project(name="Onboarding", **stamp)
    session.add(project)
    await session.flush()
    task_list = TaskList(name="Kickoff", project_id=project.id, **stamp)
    session.add(task_list)
    await session.flush()
    session.add(Task(title="Send welcome pack", project_id=project.id, task_list_id=task_list.id, **stamp))
    session.add(
        AiExecution(
            provider="fake",
            model="m",
            operation="summarize",
            fingerprint="f",
            status="success",
            **stamp,
        )
    )
    # Same execution id but another tenant: must never show up.
    session.add(Project(name="Leak", tenant_id="agency-2", workflow_execution_id=execution_id))
    await session.commit()
    await engine.complete(session, run)

    lineage = (await service.get_lineage(session, execution_id, caller_for("agency-1"))).unwrap()
    assert lineage.workflow.id == workflow.id
    assert lineage.signal.id == signal.id
    assert lineage.execution.status == "succeeded"
    assert [event.event_type for event in lineage.events] == [EVENT_TRIGGERED, EVENT_STEP_STARTED, EVENT_COMPLETED]
    assert [row.name for row in lineage.created_entities["projects"]] == ["Onboarding"]
    assert len(lineage.created_entities["task_lists"]) == 1
    assert len(lineage.created_entities["tasks"]) == 1
    assert len(lineage.created_entities["ai_executions"]) == 1

    with pytest.raises(WorkflowEngineError):
        await engine.complete(session, run)


@pytest.mark.asyncio
async def test_foreign_tenant_cannot_read_lineage_or_events(session) -> None:
    _, _, execution_id = await _triggered_execution(session)
    service = ExecutionTrackingService()

    lineage = await service.get_lineage(session, execution_id, caller_for("agency-2"))
    events = await service.get_events(session, execution_id, caller_for("agency-2"))
    assert (lineage.status, lineage.code) == (403, "ACCESS_DENIED")
    assert (events.status, events.code) == (403, "ACCESS_DENIED")
    assert (await service.get_lineage(session, "missing", caller_for("agency-1"))).status == 404


@pytest.mark.asyncio
async def test_super_operator_reads_lineage_in_execution_tenant(session) -> None:
    _, signal, execution_id = await _triggered_execution(session)
    lineage = (
        await ExecutionTrackingService().get_lineage(session, execution_id, caller_for(None, role="super_operator"))
    ).unwrap()
    assert lineage.signal.id == signal.id


@pytest.mark.asyncio
async def test_list_executions_filters_by_signal(session) -> None:
    _, signal, execution_id = await _triggered_execution(session)
    service = ExecutionTrackingService()
    rows = (await service.list_executions(session, caller_for("agency-1"), trigger_signal_id=signal.id)).unwrap()
    assert [row.id for row in rows] == [execution_id]
    assert (await service.list_executions(session, caller_for("agency-2"))).unwrap() == []


@pytest.mark.asyncio
async def test_super_operator_with_tenant_header_still_sees_execution_tenant_entities(session) -> None:
    _, signal, execution_id = await _triggered_execution(session)
    run = await executions_repo.get_execution(session, execution_id)
    session.add(Project(name="Onboarding", **lineage_stamp(run)))
    await session.commit()

    operator = caller_for("platform", role="super_operator")
    lineage = (await ExecutionTrackingService().get_lineage(session, execution_id, operator)).unwrap()
    assert lineage.signal.id == signal.id
    assert [row.name for row in lineage.created_entities["projects"]] == ["Onboarding"]


@pytest.mark.asyncio
async def test_task_and_project_lineage_trace_back_to_the_signal(session) -> None:
    workflow, signal, execution_id = await _triggered_execution(session)
    run = await executions_repo.get_execution(session, execution_id)
    stamp = lineage_stamp(run)
    project = Project(name="Onboarding", **stamp)
    session.add(project)
    await session.flush()
    task = Task(title="Send welcome pack", project_id=project.id, **stamp)
    manual = Task(title="Call the client", tenant_id="agency-1")
    session.add_all([task, manual])
    await session.commit()
    service = ExecutionTrackingService()

    traced = (await service.get_task_lineage(session, task.id, caller_for("agency-1"))).unwrap()
    assert traced.kind == "task"
    assert traced.entity.id == task.id
    assert traced.lineage.workflow.id == workflow.id
    assert traced.lineage.signal.id == signal.id
    assert [row.id for row in traced.lineage.created_entities["tasks"]] == [task.id]

    by_project = (await service.get_project_lineage(session, project.id, caller_for("agency-1"))).unwrap()
    assert by_project.lineage.execution.id == execution_id

    untraced = (await service.get_task_lineage(session, manual.id, caller_for("agency-1"))).unwrap()
    assert untraced.lineage is None


@pytest.mark.asyncio
async def test_entity_lineage_is_tenant_checked(session) -> None:
    _, _, execution_id = await _triggered_execution(session)
    run = await executions_repo.get_execution(session, execution_id)
    task = Task(title="Send welcome pack", **lineage_stamp(run))
    session.add(task)
    await session.commit()
    service = ExecutionTrackingService()

    foreign = await service.get_task_lineage(session, task.id, caller_for("agency-2"))
    assert (foreign.status, foreign.code) == (403, "ACCESS_DENIED")
    missing = await service.get_project_lineage(session, "missing", caller_for("agency-1"))
    assert (missing.status, missing.code) == (404, "NOT_FOUND")
    operator = await service.get_task_lineage(session, task.id, caller_for(None, role="super_operator"))
    assert operator.unwrap().lineage.execution.id == execution_id
