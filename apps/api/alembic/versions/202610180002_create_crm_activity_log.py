"""create crm activity log

Revision ID: 202610180002
Revises: 202610180001
Create Date: 2026-10-18 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180002"
down_revision: str | None = "202610180001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_activity_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("actor_name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_activity_log_entity", "crm_activity_log", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_crm_activity_log_actor_id", "crm_activity_log", ["actor_id"], unique=False)
    op.create_index("ix_crm_activity_log_created_at", "crm_activity_log", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_activity_log_created_at", table_name="crm_activity_log")
    op.drop_index("ix_crm_activity_log_actor_id", table_name="crm_activity_log")
    op.drop_index("ix_crm_activity_log_entity", table_name="crm_activity_log")
    op.drop_table("crm_activity_log")
