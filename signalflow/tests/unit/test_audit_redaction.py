from __future__ import annotations

import pytest

from signalflow.core.config import get_settings
from signalflow.persistence.db import SessionLocal
from signalflow.persistence.repos import audit as audit_repo
from signalflow.services.audit import AuditRecord, drain_pending_audits, emit_audit, sanitize_metadata


def test_audit_redacts_tokens_and_secrets() -> None:
    # Redact token and secret fields in audit metadata, including nested lists.
    payload = {
        "id_token": "secret-token",
        "client_secret": "super-secret",
        "nested": {"authorization": "Bearer abc", "items": [{"api_key": "k"}]},
        "Password": "hunter2",
        "safe": "value",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["id_token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"] == [{"api_key": "[REDACTED]"}]
    assert sanitized["Password"] == "[REDACTED]"
    assert sanitized["safe"] == "value"


@pytest.mark.asyncio
async def test_database_sink_persists_sanitized_rows() -> None:
    emit_audit(
        AuditRecord(
            tenant_id="agency-1",
            actor_id="user-1",
            actor_role="editor",
            event_type="signals.ingested",
            resource_type="workflow_signal",
            resource_id="sig-1",
            request_id="req-1",
            metadata={"source": "crm", "webhook_token": "abc"},
        )
    )
    await drain_pending_audits()

    async with SessionLocal() as session:
        rows = await audit_repo.list_events(session, tenant_id="agency-1")
        other = await audit_repo.list_events(session, tenant_id="agency-2")
    assert len(rows) == 1
    assert rows[0].metadata_json == {"source": "crm", "webhook_token": "[REDACTED]"}
    assert (rows[0].outcome, rows[0].request_id) == ("success", "req-1")
    assert other == []


@pytest.mark.asyncio
async def test_disabled_audit_schedules_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIT_ENABLED", "false")
    get_settings.cache_clear()
    task = emit_audit(AuditRecord(tenant_id="t", actor_id=None, actor_role=None, event_type="x"))
    assert task is None
