"""Initial schema: stored workflows and execution tracking

Creates tables for:
- workflows: stored workflow definitions with run counters
- workflow_executions: one tracking record per run
- block_executions: one record per node per run
- timeline_events: append-only run audit trail

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op
from blockflow.models.base import GUID, JSONType

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create workflow and execution tracking tables."""
    # ============================================================================
    # workflows
    # ============================================================================

    op.create_table(
        "workflows",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("workflow_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("version", sa.String(50), nullable=False, server_default="1.0.0"),
        sa.Column("definition", JSONType, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("tags", JSONType, nullable=False),
        sa.Column("total_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        op.f("ix_workflows_workflow_id"), "workflows", ["workflow_id"], unique=True
    )
    op.create_index(op.f("ix_workflows_category"), "workflows", ["category"])

    # ============================================================================
    # workflow_executions
    # ============================================================================

    op.create_table(
        "workflow_executions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("execution_id", sa.String(100), nullable=False),
        sa.Column("workflow_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("mode", sa.String(20), nullable=False, server_default="production"),
        sa.Column("input_data", JSONType, nullable=False),
        sa.Column("output_data", JSONType, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_stack", sa.Text, nullable=True),
        sa.Column("progress_percentage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_time_ms", sa.Float, nullable=True),
        sa.Column("metadata", JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index(
        op.f("ix_workflow_executions_execution_id"),
        "workflow_executions",
        ["execution_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_workflow_executions_workflow_id"), "workflow_executions", ["workflow_id"]
    )
    op.create_index(
        op.f("ix_workflow_executions_status"), "workflow_executions", ["status"]
    )

    # ============================================================================
    # block_executions
    # ============================================================================

    op.create_table(
        "block_executions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column(
            "execution_id",
            sa.String(100),
            sa.ForeignKey("workflow_executions.execution_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(255), nullable=False),
        sa.Column("block_type", sa.String(255), nullable=False),
        sa.Column("block_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("input_data", JSONType, nullable=True),
        sa.Column("output_data", JSONType, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_stack", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_time_ms", sa.Float, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("metadata", JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index(
        op.f("ix_block_executions_execution_id"), "block_executions", ["execution_id"]
    )

    # ============================================================================
    # timeline_events
    # ============================================================================

    op.create_table(
        "timeline_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column(
            "execution_id",
            sa.String(100),
            sa.ForeignKey("workflow_executions.execution_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("event", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("node_id", sa.String(255), nullable=True),
        sa.Column("block_type", sa.String(255), nullable=True),
        sa.Column("details", JSONType, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        op.f("ix_timeline_events_execution_id"), "timeline_events", ["execution_id"]
    )


def downgrade() -> None:
    """Drop workflow and execution tracking tables."""
    op.drop_index(op.f("ix_timeline_events_execution_id"), table_name="timeline_events")
    op.drop_table("timeline_events")

    op.drop_index(op.f("ix_block_executions_execution_id"), table_name="block_executions")
    op.drop_table("block_executions")

    op.drop_index(op.f("ix_workflow_executions_status"), table_name="workflow_executions")
    op.drop_index(
        op.f("ix_workflow_executions_workflow_id"), table_name="workflow_executions"
    )
    op.drop_index(
        op.f("ix_workflow_executions_execution_id"), table_name="workflow_executions"
    )
    op.drop_table("workflow_executions")

    op.drop_index(op.f("ix_workflows_category"), table_name="workflows")
    op.drop_index(op.f("ix_workflows_workflow_id"), table_name="workflows")
    op.drop_table("workflows")
