from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import (
    AiExecution,
    Client,
    ExecutionOutput,
    Initiative,
    LearningArtifact,
    OpportunityArtifact,
    OutcomeReview,
    Project,
    Task,
    TaskList,
)
from signalflow.persistence.guards import lineage_predicate


# Typed lookups used by gate tenant verification; each returns None for missing rows.


async def get_client(session: AsyncSession, client_id: str) -> Client | None:
    return await session.get(Client, client_id)


async def get_initiative(session: AsyncSession, initiative_id: str) -> Initiative | None:
    return await session.get(Initiative, initiative_id)


async def get_opportunity_artifact(session: AsyncSession, artifact_id: str) -> OpportunityArtifact | None:
    return await session.get(OpportunityArtifact, artifact_id)


async def get_execution_output(session: AsyncSession, output_id: str) -> ExecutionOutput | None:
    return await session.get(ExecutionOutput, output_id)


async def get_outcome_review(session: AsyncSession, review_id: str) -> OutcomeReview | None:
    return await session.get(OutcomeReview, review_id)


async def get_learning_artifact(session: AsyncSession, artifact_id: str) -> LearningArtifact | None:
    return await session.get(LearningArtifact, artifact_id)


# Entity kinds a workflow run may create, keyed by their lineage name.
LINEAGE_KINDS: dict[str, Any] = {
    "projects": Project,
    "task_lists": TaskList,
    "tasks": Task,
    "ai_executions": AiExecution,
}


async def list_created_by_execution(
    session: AsyncSession, *, kind: str, execution_id: str, tenant_id: str
) -> list[Any]:
    model = LINEAGE_KINDS[kind]
    result = await session.execute(
        select(model)
        .where(*lineage_predicate(model, execution_id, tenant_id))
        .order_by(model.created_at, model.id)
    )
    return list(result.scalars().all())


# Entities that can be traced back to the run that created them.
_TRACEABLE: dict[str, Any] = {"task": Task, "project": Project}


async def get_lineage_entity(session: AsyncSession, *, kind: str, entity_id: str) -> Task | Project | None:
    return await session.get(_TRACEABLE[kind], entity_id)
