"""Add index on gifts.status for the payment sync sweep.

Revision ID: b41f0e8a2d57
Revises: 7c2e91d4a6b3
Create Date: 2026-10-19

"""

from alembic import op


revision = "b41f0e8a2d57"
down_revision = "7c2e91d4a6b3"
branch_labels = None
depends_on = None


def upgrade():
    # flask sync-payments filters drafts that hold a checkout session
    op.create_index("ix_gifts_status", "gifts", ["status"])


def downgrade():
    op.drop_index("ix_gifts_status", table_name="gifts")
