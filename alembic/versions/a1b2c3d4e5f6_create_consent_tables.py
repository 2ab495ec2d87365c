"""create consent lifecycle tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    op.create_table(
        "form_templates",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False, index=True),
        sa.Column("default_consent_duration", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("min_consent_duration", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("max_consent_duration", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("grace_period_days", sa.Integer(), nullable=True, server_default="30"),
        sa.Column("allow_auto_renewal", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint(
            "min_consent_duration <= default_consent_duration AND default_consent_duration <= max_consent_duration",
            name="ck_form_template_consent_duration_bounds",
        ),
        sa.CheckConstraint("min_consent_duration >= 1", name="ck_form_template_min_duration_positive"),
    )

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("form_template_id", sa.Integer(), sa.ForeignKey("form_templates.id"), nullable=False, index=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("consent_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_duration_months", sa.Integer(), nullable=True),
        sa.Column("consent_withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawal_reason", sa.Text(), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("renewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("renewal_history", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_submission_consent_expiry",
        "submissions",
        ["consent_given", "consent_withdrawn_at", "consent_expires_at"],
    )
    op.create_index("idx_submission_auto_renew", "submissions", ["auto_renew", "consent_expires_at"])

    op.create_table(
        "email_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "submission_id",
            sa.Integer(),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("renewal_cycle", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recipient_email", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("message_id", sa.String(255), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "submission_id",
            "notification_type",
            "renewal_cycle",
            name="uq_email_notification_submission_type_cycle",
        ),
    )


def downgrade() -> None:
    op.drop_table("email_notifications")
    op.drop_index("idx_submission_auto_renew", table_name="submissions")
    op.drop_index("idx_submission_consent_expiry", table_name="submissions")
    op.drop_table("submissions")
    op.drop_table("form_templates")
    op.drop_table("organizations")
    op.drop_table("users")
