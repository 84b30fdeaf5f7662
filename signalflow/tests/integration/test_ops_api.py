from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from signalflow.apps.api.main import create_app
from signalflow.services.ai.cache import get_execution_cache
from signalflow.tests.utils.seed import headers_for


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health() -> None:
    async with _client(create_app()) as client:
        response = await client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}
    assert response.json()["meta"]["api_version"] == "v1"


@pytest.mark.asyncio
async def test_ops_metrics_requires_super_operator() -> None:
    async with _client(create_app()) as client:
        await client.post(
            "/v1/signals/ingest",
            json={"source": "crm", "payload": {"dealId": "D-1"}},
            headers=headers_for("agency-1", "editor"),
        )
        denied = await client.get("/v1/ops/metrics", headers=headers_for("agency-1", "admin"))
        metrics = await client.get("/v1/ops/metrics", headers=headers_for(None, "super_operator"))

    assert denied.status_code == 403
    assert metrics.status_code == 200
    data = metrics.json()["data"]
    assert data["counters"]["signals_ingested_total"] == 1
    assert data["availability"] is not None


@pytest.mark.asyncio
async def test_ai_cache_admin() -> None:
    cache = get_execution_cache()
    await cache.set("fp-a", {"x": 1})
    await cache.set("fp-b", {"x": 2})
    operator = headers_for(None, "super_operator")
    async with _client(create_app()) as client:
        stats = await client.get("/v1/admin/ai/cache", headers=operator)
        denied = await client.delete("/v1/admin/ai/cache", headers=headers_for("agency-1", "admin"))
        cleared = await client.delete("/v1/admin/ai/cache", headers=operator)

    assert stats.json()["data"] == {"size": 2, "keys": ["fp-a", "fp-b"]}
    assert denied.status_code == 403
    assert cleared.json()["data"] == {"cleared": 2}
    assert (await cache.stats())["size"] == 0
