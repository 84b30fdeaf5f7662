from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from signalflow.apps.api.main import create_app
from signalflow.domain.models import GateDecision
from signalflow.persistence.db import SessionLocal
from signalflow.tests.utils.seed import headers_for, seed_gate_targets


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_record_and_read_gate_decisions() -> None:
    async with SessionLocal() as session:
        targets = await seed_gate_targets(session, tenant_id="agency-1")
    editor = headers_for("agency-1", "editor", actor_id="reviewer-1")
    body = {
        "gate_type": "opportunity_review",
        "decision": "approve",
        "target_type": "opportunity_artifact",
        "target_id": targets["opportunity_artifact"],
        "rationale": "Strong demand signal",
    }
    async with _client(create_app()) as client:
        created = await client.post("/v1/gate-decisions", json=body, headers=editor)
        await client.post("/v1/gate-decisions", json={**body, "decision": "discuss"}, headers=editor)
        history = await client.get(
            "/v1/gate-decisions",
            params={"target_type": "opportunity_artifact", "target_id": targets["opportunity_artifact"]},
            headers=headers_for("agency-1", "reader"),
        )
        latest = await client.get(
            "/v1/gate-decisions/latest",
            params={"target_type": "opportunity_artifact", "target_id": targets["opportunity_artifact"]},
            headers=headers_for("agency-1", "reader"),
        )

    assert created.status_code == 201
    assert created.json()["data"]["actor_id"] == "reviewer-1"
    assert [row["decision"] for row in history.json()["data"]] == ["discuss", "approve"]
    assert latest.json()["data"]["decision"] == "discuss"


@pytest.mark.asyncio
async def test_gate_decision_failures() -> None:
    async with SessionLocal() as session:
        targets = await seed_gate_targets(session, tenant_id="agency-2")
    editor = headers_for("agency-1", "editor")
    async with _client(create_app()) as client:
        missing = await client.post(
            "/v1/gate-decisions",
            json={"gate_type": "qa", "decision": "approve", "target_type": "execution_output", "target_id": "missing-id"},
            headers=editor,
        )
        foreign = await client.post(
            "/v1/gate-decisions",
            json={
                "gate_type": "qa",
                "decision": "reject",
                "target_type": "learning_artifact",
                "target_id": targets["learning_artifact"],
            },
            headers=editor,
        )
        invalid = await client.post(
            "/v1/gate-decisions", json={"decision": "perhaps", "target_type": "initiative"}, headers=editor
        )

    assert missing.status_code == 403
    assert missing.json()["error"]["code"] == "ACCESS_DENIED"
    assert foreign.status_code == 403
    assert invalid.status_code == 400
    fields = {item["field"] for item in invalid.json()["error"]["details"]["errors"]}
    assert fields == {"gate_type", "decision", "target_id"}
    async with SessionLocal() as session:
        count = (await session.execute(select(func.count()).select_from(GateDecision))).scalar_one()
    assert count == 0
