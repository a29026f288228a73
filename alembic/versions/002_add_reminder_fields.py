"""Add reminder and engagement columns to review_queue.

Revision ID: 002
Revises: 001
Create Date: 2026-09-20
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("review_queue") as batch:
        batch.add_column(sa.Column("has_interaction", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch.add_column(sa.Column("reminder_sent_at", sa.DateTime(), nullable=True))
        batch.add_column(sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"))
        batch.add_column(sa.Column("reminder_blocked_reason", sa.Text(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("review_queue") as batch:
        batch.drop_column("reminder_blocked_reason")
        batch.drop_column("reminder_count")
        batch.drop_column("reminder_sent_at")
        batch.drop_column("has_interaction")
