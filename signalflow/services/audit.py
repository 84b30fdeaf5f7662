from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from signalflow.core.config import get_settings
from signalflow.domain.models import AuditEvent
from signalflow.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_id(request: Request | None) -> str | None:
    # Correlate audit rows with the request id assigned by the API middleware.
    if request is None:
        return None
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")


@dataclass(frozen=True)
class AuditRecord:
    tenant_id: str | None
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str = "success"
    actor_type: str = "user"
    resource_type: str | None = None
    resource_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    occurred_at: datetime | None = None


class AuditSink(Protocol):
    async def record(self, record: AuditRecord) -> None:
        ...


class DatabaseAuditSink:
    """Write audit rows in a dedicated session so callers' transactions are never touched."""

    async def record(self, record: AuditRecord) -> None:
        event = AuditEvent(
            occurred_at=record.occurred_at or datetime.now(timezone.utc),
            tenant_id=record.tenant_id,
            actor_type=record.actor_type,
            actor_id=record.actor_id,
            actor_role=record.actor_role,
            event_type=record.event_type,
            outcome=record.outcome,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            request_id=record.request_id,
            metadata_json=sanitize_metadata(record.metadata or {}),
            error_code=record.error_code,
        )
        async with SessionLocal() as audit_session:
            try:
                audit_session.add(event)
                await audit_session.commit()
            except SQLAlchemyError:
                await audit_session.rollback()
                raise


_default_sink: AuditSink | None = None
_pending: set[asyncio.Task[None]] = set()


def get_audit_sink() -> AuditSink:
    global _default_sink
    if _default_sink is None:
        _default_sink = DatabaseAuditSink()
    return _default_sink


async def _record_best_effort(sink: AuditSink, record: AuditRecord) -> None:
    # Audit failures are observed and logged; they never reach the operation that emitted them.
    try:
        await sink.record(record)
    except Exception as exc:  # noqa: BLE001 - audit must not break user flows
        logger.warning(
            "audit_event_write_failed event_type=%s tenant_id=%s request_id=%s",
            record.event_type,
            record.tenant_id,
            record.request_id,
            exc_info=exc,
        )


def emit_audit(record: AuditRecord, *, sink: AuditSink | None = None) -> asyncio.Task[None] | None:
    # Schedule the audit write in the background and keep a reference so the task is not collected.
    if not get_settings().audit_enabled:
        return None
    task = asyncio.create_task(_record_best_effort(sink or get_audit_sink(), record))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain_pending_audits() -> None:
    # Wait for scheduled audit writes (tests and graceful shutdown).
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
