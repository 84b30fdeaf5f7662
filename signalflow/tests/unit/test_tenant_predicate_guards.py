from __future__ import annotations

import pytest

from signalflow.core.config import get_settings
from signalflow.domain.models import Task
from signalflow.persistence.guards import TenantPredicateError, lineage_predicate
from signalflow.persistence.repos import executions as executions_repo
from signalflow.persistence.repos import gates as gates_repo
from signalflow.persistence.repos import routes as routes_repo
from signalflow.persistence.repos import signals as signals_repo


def _enable_guard(monkeypatch: pytest.MonkeyPatch) -> None:
    # Force tenant predicate enforcement for guard tests.
    monkeypatch.setenv("AUTHZ_REQUIRE_TENANT_PREDICATE", "true")
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_signal_repo_requires_tenant_predicate(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        await signals_repo.list_signals(None, tenant_id=None)  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await signals_repo.get_by_dedup_key(None, tenant_id="", source="crm", dedup_key="k")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_route_and_execution_repos_require_tenant_predicate(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        await routes_repo.list_candidate_routes(None, tenant_id=None, source="crm")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await executions_repo.list_executions(None, tenant_id=None)  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await gates_repo.list_decisions(None, tenant_id=None, target_type="initiative", target_id="i")  # type: ignore[arg-type]


def test_lineage_predicate_always_pairs_execution_and_tenant(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    clauses = lineage_predicate(Task, "exec-1", "agency-1")
    assert len(clauses) == 2
    with pytest.raises(TenantPredicateError):
        lineage_predicate(Task, "exec-1", None)  # type: ignore[arg-type]
