"""video pipeline core: generation jobs, social accounts, posts, event outbox

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("concept_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False, server_default="tiktok"),
        sa.Column("prompt_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("provider", sa.String(length=32), nullable=True),
        sa.Column("requested_provider", sa.String(length=32), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("permanently_failed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider_job_id", sa.String(length=128), nullable=True),
        sa.Column("provider_video_url", sa.String(length=1000), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("generation_cost", sa.Float(), nullable=True),
        sa.Column("storage_url", sa.String(length=1000), nullable=True),
        sa.Column("cdn_url", sa.String(length=1000), nullable=True),
        sa.Column("quality_json", sa.Text(), nullable=True),
        sa.Column("target_platforms_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("caption", sa.Text(), nullable=False, server_default=""),
        sa.Column("hashtags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("attempt_count <= 3", name="ck_generation_jobs_attempt_count_max"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_tenant_created_at", "generation_jobs", ["tenant_id", "created_at"], unique=False)
    op.create_index("ix_generation_jobs_tenant_concept", "generation_jobs", ["tenant_id", "concept_id"], unique=False)
    op.create_index("ix_generation_jobs_status_created_at", "generation_jobs", ["status", "created_at"], unique=False)

    op.create_table(
        "social_accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("platform", sa.String(length=24), nullable=False),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("platform_account_id", sa.String(length=128), nullable=True),
        sa.Column("niche", sa.String(length=40), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("daily_limit", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("used_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("access_token_encrypted", sa.Text(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("disabled_reason", sa.String(length=255), nullable=True),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("used_today >= 0", name="ck_social_accounts_used_today_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "platform", "username", name="uq_social_accounts_tenant_platform_username"),
    )
    op.create_index(
        "ix_social_accounts_tenant_platform_active",
        "social_accounts",
        ["tenant_id", "platform", "is_active"],
        unique=False,
    )

    op.create_table(
        "social_posts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=True),
        sa.Column("platform", sa.String(length=24), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("platform_post_id", sa.String(length=128), nullable=True),
        sa.Column("post_url", sa.String(length=500), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["social_accounts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_social_posts_job_platform", "social_posts", ["job_id", "platform"], unique=False)
    op.create_index("ix_social_posts_status_created_at", "social_posts", ["status", "created_at"], unique=False)
    op.create_index("ix_social_posts_account_created_at", "social_posts", ["account_id", "created_at"], unique=False)

    op.create_table(
        "pipeline_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=True),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("dedupe_key", sa.String(length=160), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key", name="uq_pipeline_events_dedupe_key"),
    )
    op.create_index(
        "ix_pipeline_events_status_available_at",
        "pipeline_events",
        ["status", "available_at"],
        unique=False,
    )
    op.create_index("ix_pipeline_events_job_name", "pipeline_events", ["job_id", "name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_pipeline_events_job_name", table_name="pipeline_events")
    op.drop_index("ix_pipeline_events_status_available_at", table_name="pipeline_events")
    op.drop_table("pipeline_events")

    op.drop_index("ix_social_posts_account_created_at", table_name="social_posts")
    op.drop_index("ix_social_posts_status_created_at", table_name="social_posts")
    op.drop_index("ix_social_posts_job_platform", table_name="social_posts")
    op.drop_table("social_posts")

    op.drop_index("ix_social_accounts_tenant_platform_active", table_name="social_accounts")
    op.drop_table("social_accounts")

    op.drop_index("ix_generation_jobs_status_created_at", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_tenant_concept", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_tenant_created_at", table_name="generation_jobs")
    op.drop_table("generation_jobs")
