"""create visibility scan tables

Revision ID: a1c4e7b2d9f0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "a1c4e7b2d9f0"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================
    # 1. Tenants, prompts, providers
    # =========================================================
    op.create_table(
        "tenants",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(255), nullable=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("brand_variants", JSONB(), nullable=False, server_default="[]"),
        sa.Column("competitors", JSONB(), nullable=False, server_default="[]"),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("openai_api_key", sa.LargeBinary(), nullable=True),
        sa.Column("perplexity_api_key", sa.LargeBinary(), nullable=True),
        sa.Column("gemini_api_key", sa.LargeBinary(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    providers = op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(30), nullable=False, unique=True),
        sa.Column("model", sa.String(80), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("allowed_tiers", JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.bulk_insert(
        providers,
        [
            {"name": "openai", "model": "gpt-4o-mini", "is_enabled": True, "allowed_tiers": []},
            {"name": "perplexity", "model": "sonar", "is_enabled": True, "allowed_tiers": []},
            {"name": "gemini", "model": "gemini-2.0-flash", "is_enabled": True, "allowed_tiers": []},
        ],
    )

    # =========================================================
    # 2. Batch jobs
    # =========================================================
    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued", index=True),
        sa.Column("idempotency_key", sa.String(120), nullable=True, unique=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # Stuck-job scan: in_progress rows ordered by heartbeat
    op.create_index("ix_batch_jobs_status_heartbeat", "batch_jobs", ["status", "last_heartbeat"])

    # =========================================================
    # 3. Runs and their results
    # =========================================================
    op.create_table(
        "prompt_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "batch_job_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("batch_jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("tenant_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("prompt_id", sa.Integer(), sa.ForeignKey("prompts.id"), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("error_message", sa.String(1000), nullable=True),
        sa.Column("error_retryable", sa.Boolean(), nullable=True),
        sa.Column("model", sa.String(80), nullable=True),
        sa.Column("token_in", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("token_out", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("batch_job_id", "prompt_id", "provider_id", name="uq_prompt_run_pair"),
    )
    op.create_index("ix_prompt_runs_run_at", "prompt_runs", ["run_at"])

    op.create_table(
        "visibility_results",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "prompt_run_id",
            sa.Integer(),
            sa.ForeignKey("prompt_runs.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("org_brand_present", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("org_brand_prominence", sa.Integer(), nullable=True),
        sa.Column("competitors_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("brands_json", JSONB(), nullable=False, server_default="[]"),
        sa.Column("competitors_json", JSONB(), nullable=False, server_default="[]"),
        sa.Column("citations_json", JSONB(), nullable=False, server_default="[]"),
        sa.Column("citations_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("url_citations_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("score >= 0 AND score <= 10", name="ck_visibility_score_range"),
    )

    # =========================================================
    # 4. Usage counters and correction audit
    # =========================================================
    op.create_table(
        "usage_counters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("runs_executed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_runs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("token_in", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("token_out", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "usage_date", name="uq_usage_counter_day"),
    )

    op.create_table(
        "score_corrections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "prompt_run_id",
            sa.Integer(),
            sa.ForeignKey("prompt_runs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("previous_score", sa.Float(), nullable=False),
        sa.Column("new_score", sa.Float(), nullable=False),
        sa.Column("recomputed_score", sa.Float(), nullable=False),
        sa.Column("divergence", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("corrected_inputs", JSONB(), nullable=False, server_default="{}"),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("corrected_by", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("score_corrections")
    op.drop_table("usage_counters")
    op.drop_table("visibility_results")
    op.drop_index("ix_prompt_runs_run_at", table_name="prompt_runs")
    op.drop_table("prompt_runs")
    op.drop_index("ix_batch_jobs_status_heartbeat", table_name="batch_jobs")
    op.drop_table("batch_jobs")
    op.drop_table("providers")
    op.drop_table("prompts")
    op.drop_table("tenants")
