"""runs and turn logs

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "runs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("world_seed", sa.String(length=64), nullable=False),
        sa.Column("locale", sa.String(length=8), nullable=False, server_default="vi"),
        sa.Column("character_name", sa.String(length=120), nullable=False),
        sa.Column("state_json", postgresql.JSONB, nullable=False),
        sa.Column("state_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "turn_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("run_id", sa.Integer, sa.ForeignKey("runs.id"), nullable=False),
        sa.Column("turn_no", sa.Integer, nullable=False),
        sa.Column("choice_id", sa.String(length=120)),
        sa.Column("narrative", sa.Text, nullable=False),
        sa.Column("scene_type", sa.String(length=80)),
        sa.Column("events_json", postgresql.JSONB),
        sa.Column("ai_json", postgresql.JSONB),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_turn_logs_run_id", "turn_logs", ["run_id"])


def downgrade() -> None:
    op.drop_index("ix_turn_logs_run_id", table_name="turn_logs")
    op.drop_table("turn_logs")
    op.drop_table("runs")
