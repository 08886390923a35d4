"""Initial schema for business cycle metrics.

Revision ID: 001
Revises:
Create Date: 2025-01-10 00:00:00.000000

Creates task_deployments, the only table owned by this project. work_items,
pull_requests, commits, deployments, commits_diffs and project_mapping come
from upstream collectors.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create task_deployments table
    op.create_table(
        "task_deployments",
        sa.Column("task_id", sa.String(length=255), nullable=False),
        sa.Column("deployment_id", sa.String(length=255), nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        # Timestamps
        sa.Column("task_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("first_commit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pr_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pr_merged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deployment_at", sa.DateTime(timezone=True), nullable=True),
        # Metrics (minutes)
        sa.Column("planning_time", sa.Integer(), nullable=True),
        sa.Column("code_time", sa.Integer(), nullable=True),
        sa.Column("deploy_time", sa.Integer(), nullable=True),
        sa.Column("total_cycle_time", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("task_id", "deployment_id", "connection_id"),
    )
    op.create_index("idx_task_deployments_task", "task_deployments", ["connection_id", "task_id"])


def downgrade() -> None:
    op.drop_table("task_deployments")
