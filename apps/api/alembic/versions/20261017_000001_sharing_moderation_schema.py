"""create sharing and moderation schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


OPEN_STATUS_CLAUSE = sa.text("status IN ('pending', 'under_review')")


def upgrade() -> None:
    op.create_table(
        "scenarios",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("prompt_type", sa.String(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scenarios_user_id"), "scenarios", ["user_id"], unique=False)

    op.create_table(
        "share_links",
        sa.Column("share_url", sa.String(), nullable=False),
        sa.Column("short_url", sa.String(), nullable=True),
        sa.Column("scenario_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("title", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=300), nullable=True),
        sa.Column("preview_image", sa.String(), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("share_count", sa.Integer(), nullable=False),
        sa.Column("report_count", sa.Integer(), nullable=False),
        sa.Column("first_access_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_access_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hidden_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hidden_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("share_url"),
        sa.UniqueConstraint("short_url"),
    )
    op.create_index(op.f("ix_share_links_scenario_id"), "share_links", ["scenario_id"], unique=False)
    op.create_index(op.f("ix_share_links_owner_id"), "share_links", ["owner_id"], unique=False)
    op.create_index(op.f("ix_share_links_expires_at"), "share_links", ["expires_at"], unique=False)
    op.create_index(op.f("ix_share_links_created_at"), "share_links", ["created_at"], unique=False)
    op.create_index("ix_share_links_owner_created", "share_links", ["owner_id", "created_at"], unique=False)
    op.create_index("ix_share_links_active_hidden", "share_links", ["is_active", "is_hidden"], unique=False)

    op.create_table(
        "share_link_counters",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("share_url", sa.String(), nullable=False),
        sa.Column("dimension", sa.String(), nullable=False),
        sa.Column("bucket", sa.String(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["share_url"], ["share_links.share_url"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_url", "dimension", "bucket", name="uq_share_link_counters_bucket"),
    )
    op.create_index(op.f("ix_share_link_counters_share_url"), "share_link_counters", ["share_url"], unique=False)

    op.create_table(
        "reports",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("scenario_id", sa.String(), nullable=False),
        sa.Column("share_url", sa.String(), nullable=True),
        sa.Column("reporter_id", sa.String(), nullable=True),
        sa.Column("reporter_ip", sa.String(), nullable=False),
        sa.Column("reporter_identity", sa.String(), nullable=False),
        sa.Column("reporter_user_agent", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority_score", sa.Integer(), nullable=False),
        sa.Column("is_auto_moderated", sa.Boolean(), nullable=False),
        sa.Column("auto_moderation_score", sa.Float(), nullable=True),
        sa.Column("action_taken", sa.String(), nullable=False),
        sa.Column("action_reason", sa.String(), nullable=True),
        sa.Column("resolution", sa.String(), nullable=True),
        sa.Column("moderator_notes", sa.String(length=1000), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_reports_target_id"), "reports", ["target_id"], unique=False)
    op.create_index(op.f("ix_reports_scenario_id"), "reports", ["scenario_id"], unique=False)
    op.create_index(op.f("ix_reports_share_url"), "reports", ["share_url"], unique=False)
    op.create_index(op.f("ix_reports_created_at"), "reports", ["created_at"], unique=False)
    op.create_index(
        "uq_reports_open_target_identity",
        "reports",
        ["target_type", "target_id", "reporter_identity"],
        unique=True,
        postgresql_where=OPEN_STATUS_CLAUSE,
        sqlite_where=OPEN_STATUS_CLAUSE,
    )
    op.create_index("ix_reports_status_priority", "reports", ["status", "priority_score", "created_at"], unique=False)
    op.create_index("ix_reports_target_status", "reports", ["target_id", "status"], unique=False)
    op.create_index("ix_reports_reason_status", "reports", ["reason", "status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_reports_reason_status", table_name="reports")
    op.drop_index("ix_reports_target_status", table_name="reports")
    op.drop_index("ix_reports_status_priority", table_name="reports")
    op.drop_index("uq_reports_open_target_identity", table_name="reports")
    op.drop_index(op.f("ix_reports_created_at"), table_name="reports")
    op.drop_index(op.f("ix_reports_share_url"), table_name="reports")
    op.drop_index(op.f("ix_reports_scenario_id"), table_name="reports")
    op.drop_index(op.f("ix_reports_target_id"), table_name="reports")
    op.drop_table("reports")

    op.drop_index(op.f("ix_share_link_counters_share_url"), table_name="share_link_counters")
    op.drop_table("share_link_counters")

    op.drop_index("ix_share_links_active_hidden", table_name="share_links")
    op.drop_index("ix_share_links_owner_created", table_name="share_links")
    op.drop_index(op.f("ix_share_links_created_at"), table_name="share_links")
    op.drop_index(op.f("ix_share_links_expires_at"), table_name="share_links")
    op.drop_index(op.f("ix_share_links_owner_id"), table_name="share_links")
    op.drop_index(op.f("ix_share_links_scenario_id"), table_name="share_links")
    op.drop_table("share_links")

    op.drop_index(op.f("ix_scenarios_user_id"), table_name="scenarios")
    op.drop_table("scenarios")
