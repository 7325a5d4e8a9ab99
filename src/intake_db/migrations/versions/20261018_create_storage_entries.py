"""Create the storage_entries table.

One row per stored key.  ``value`` holds the JSON document as text; the
``updated_at`` index serves the TTL purge run by ``intake-cleanup``.

Revision ID: 20261018_storage_entries
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP

# revision identifiers, used by Alembic.
revision = "20261018_storage_entries"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "storage_entries",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_storage_entries_updated_at",
        "storage_entries",
        ["updated_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_storage_entries_updated_at", table_name="storage_entries")
    op.drop_table("storage_entries")
