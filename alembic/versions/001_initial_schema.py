"""Initial schema: bot configs, prompts, delivery ledger, verification, cooldowns

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "bot_configs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="America/New_York"),
        sa.Column("morning_time", sa.String(5), nullable=False, server_default="09:00"),
        sa.Column("evening_time", sa.String(5), nullable=False, server_default="18:00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column("telegram_chat_id", sa.String(32), nullable=True, unique=True, index=True),
        sa.Column("prompt_source", sa.String(16), nullable=False, server_default="generated"),
        sa.Column("notion_token", sa.Text(), nullable=True),
        sa.Column("notion_database_id", sa.String(64), nullable=True),
        sa.Column("last_webhook_setup_at", sa.DateTime(), nullable=True),
        sa.Column("last_webhook_status", sa.String(16), nullable=True),
        sa.Column("last_webhook_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "bot_state",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("last_prompt_type", sa.String(16), nullable=True),
        sa.Column("last_prompt_date", sa.Date(), nullable=True),
        sa.Column("last_prompt_sent_at", sa.DateTime(), nullable=True),
        sa.Column("last_prompt_ref", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "user_prompts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("post_type", sa.String(16), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("week_theme", sa.String(255), nullable=False, server_default=""),
        sa.Column("prompts", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("response", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "date", "post_type", name="uq_user_prompt_slot"),
    )

    op.create_table(
        "prompt_deliveries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("local_date", sa.Date(), nullable=False, index=True),
        sa.Column("slot", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("prompt_ref", sa.String(64), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.UniqueConstraint("user_id", "local_date", "slot", name="uq_delivery_user_date_slot"),
    )

    op.create_table(
        "telegram_verification_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("code", sa.String(6), nullable=False, index=True),
        sa.Column("chat_id", sa.String(32), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "verification_attempts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("chat_id", sa.String(32), nullable=False, unique=True, index=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "send_cooldowns",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("cooldown_key", sa.String(128), nullable=False),
        sa.Column("send_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_started_at", sa.DateTime(), nullable=False),
        sa.Column("last_sent_at", sa.DateTime(), nullable=True, index=True),
        sa.UniqueConstraint("user_id", "cooldown_key", name="uq_cooldown_user_key"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_id", sa.String(100), nullable=False, index=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("job_runs")
    op.drop_table("send_cooldowns")
    op.drop_table("verification_attempts")
    op.drop_table("telegram_verification_codes")
    op.drop_table("prompt_deliveries")
    op.drop_table("user_prompts")
    op.drop_table("bot_state")
    op.drop_table("bot_configs")
