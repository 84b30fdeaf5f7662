"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, *, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=nullable)


def upgrade() -> None:
    # Tenant-owned planning entities that gate decisions point at.
    op.create_table(
        "clients",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"])

    op.create_table(
        "initiatives",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_initiatives_client_id", "initiatives", ["client_id"])

    op.create_table(
        "opportunity_artifacts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("statement", sa.Text(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_opportunity_artifacts_tenant_id", "opportunity_artifacts", ["tenant_id"])
    op.create_index("ix_opportunity_artifacts_client_id", "opportunity_artifacts", ["client_id"])

    for table, text_column in (
        ("execution_outputs", "summary"),
        ("outcome_reviews", "outcome_summary"),
        ("learning_artifacts", "learning"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("initiative_id", sa.String(), nullable=False),
            sa.Column(text_column, sa.Text(), nullable=True),
            _ts("created_at"),
        )
        op.create_index(f"ix_{table}_initiative_id", table, ["initiative_id"])

    op.create_table(
        "workflows",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        _ts("created_at"),
    )
    op.create_index("ix_workflows_tenant_id", "workflows", ["tenant_id"])

    op.create_table(
        "workflow_signals",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("signal_type", sa.String(), nullable=False),
        sa.Column("payload_json", postgresql.JSONB(), nullable=False),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("urgency", sa.String(), nullable=False, server_default="normal"),
        sa.Column("dedup_key", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        # Concurrent replays of the same event race on this constraint, not on a read-then-write.
        sa.UniqueConstraint("tenant_id", "source", "dedup_key", name="uq_workflow_signals_dedup"),
    )
    op.create_index("ix_workflow_signals_tenant_id", "workflow_signals", ["tenant_id"])
    op.create_index("ix_workflow_signals_tenant_status", "workflow_signals", ["tenant_id", "status"])

    op.create_table(
        "signal_routes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.String(), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("signal_type", sa.String(), nullable=True),
        sa.Column("urgency_filter", postgresql.JSONB(), nullable=True),
        sa.Column("match_predicate", postgresql.JSONB(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_signal_routes_tenant_id", "signal_routes", ["tenant_id"])
    op.create_index("ix_signal_routes_workflow_id", "signal_routes", ["workflow_id"])
    op.create_index(
        "ix_signal_routes_tenant_source_enabled", "signal_routes", ["tenant_id", "source", "enabled"]
    )

    op.create_table(
        "workflow_executions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.String(), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("trigger_signal_id", sa.String(), nullable=True),
        sa.Column("trigger_payload_json", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="running"),
        sa.Column("error", sa.Text(), nullable=True),
        _ts("started_at", nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_workflow_executions_tenant_id", "workflow_executions", ["tenant_id"])
    op.create_index("ix_workflow_executions_workflow_id", "workflow_executions", ["workflow_id"])
    op.create_index("ix_workflow_executions_trigger_signal_id", "workflow_executions", ["trigger_signal_id"])
    op.create_index("ix_workflow_executions_status", "workflow_executions", ["status"])

    op.create_table(
        "workflow_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("execution_id", sa.String(), sa.ForeignKey("workflow_executions.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("step_id", sa.String(), nullable=True),
        sa.Column("payload_json", postgresql.JSONB(), nullable=True),
        _ts("occurred_at", nullable=False),
    )
    op.create_index("ix_workflow_events_execution_id", "workflow_events", ["execution_id"])
    op.create_index("ix_workflow_events_tenant_id", "workflow_events", ["tenant_id"])
    op.create_index(
        "ix_workflow_events_execution_occurred", "workflow_events", ["execution_id", "occurred_at"]
    )

    op.create_table(
        "gate_decisions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("gate_type", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("decision", sa.String(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_gate_decisions_tenant_id", "gate_decisions", ["tenant_id"])
    op.create_index("ix_gate_decisions_target", "gate_decisions", ["target_type", "target_id"])

    op.create_table(
        "ai_executions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("workflow_execution_id", sa.String(), nullable=True),
        sa.Column("step_id", sa.String(), nullable=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("fingerprint", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("cached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("output_json", postgresql.JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
    )
    op.create_index("ix_ai_executions_tenant_id", "ai_executions", ["tenant_id"])
    op.create_index("ix_ai_executions_fingerprint", "ai_executions", ["fingerprint"])
    op.create_index("ix_ai_executions_lineage", "ai_executions", ["workflow_execution_id", "tenant_id"])

    # Entities created by workflow steps carry their execution id for lineage lookups.
    op.create_table(
        "projects",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("workflow_execution_id", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_table(
        "task_lists",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("workflow_execution_id", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("task_list_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("workflow_execution_id", sa.String(), nullable=True),
        _ts("created_at"),
    )
    for table in ("projects", "task_lists", "tasks"):
        op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"])
        op.create_index(f"ix_{table}_lineage", table, ["workflow_execution_id", "tenant_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"])


def downgrade() -> None:
    for table in (
        "audit_events",
        "tasks",
        "task_lists",
        "projects",
        "ai_executions",
        "gate_decisions",
        "workflow_events",
        "workflow_executions",
        "signal_routes",
        "workflow_signals",
        "workflows",
        "learning_artifacts",
        "outcome_reviews",
        "execution_outputs",
        "opportunity_artifacts",
        "initiatives",
        "clients",
    ):
        op.drop_table(table)
