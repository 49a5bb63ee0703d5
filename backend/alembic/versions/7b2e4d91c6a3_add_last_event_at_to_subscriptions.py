"""add last_event_at to subscriptions

Revision ID: 7b2e4d91c6a3
Revises: 3f1c9a7b2d10
Create Date: 2026-10-19 10:02:41.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7b2e4d91c6a3"
down_revision: str | Sequence[str] | None = "3f1c9a7b2d10"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add last_event_at column to subscriptions table."""
    op.add_column(
        "subscriptions",
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Remove last_event_at column from subscriptions table."""
    op.drop_column("subscriptions", "last_event_at")
