"""Restrict gifts.status to draft, paid and disabled.

Revision ID: e5a9c3f17b20
Revises: b41f0e8a2d57
Create Date: 2026-10-19

"""

from alembic import op


revision = "e5a9c3f17b20"
down_revision = "b41f0e8a2d57"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("gifts") as batch_op:
        batch_op.create_check_constraint(
            "ck_gifts_status", "status IN ('draft', 'paid', 'disabled')"
        )


def downgrade():
    with op.batch_alter_table("gifts") as batch_op:
        batch_op.drop_constraint("ck_gifts_status", type_="check")
