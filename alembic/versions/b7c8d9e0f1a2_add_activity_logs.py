"""add activity_logs audit table

Revision ID: b7c8d9e0f1a2
Revises: a1b2c3d4e5f6
Create Date: 2026-10-16 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "b7c8d9e0f1a2"
down_revision: str | None = "a1b2c3d4e5f6"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "submission_id", sa.Integer(), sa.ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
    )
    op.create_index("idx_activity_user_action_timestamp", "activity_logs", ["user_id", "action", "timestamp"])
    op.create_index(
        "idx_activity_submission_action_timestamp", "activity_logs", ["submission_id", "action", "timestamp"]
    )


def downgrade() -> None:
    op.drop_index("idx_activity_submission_action_timestamp", table_name="activity_logs")
    op.drop_index("idx_activity_user_action_timestamp", table_name="activity_logs")
    op.drop_table("activity_logs")
