"""per-payment refund breakdown

Revision ID: 0002_refund_breakdown
Revises: 0001_initial
Create Date: 2026-10-20

"""

from alembic import op
import sqlalchemy as sa

revision = "0002_refund_breakdown"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("refund_requests") as batch:
        batch.add_column(sa.Column("refund_breakdown_json", sa.Text(), nullable=False, server_default="[]"))
        batch.alter_column("gateway_refund_id", existing_type=sa.String(length=120), type_=sa.String(length=255))


def downgrade() -> None:
    with op.batch_alter_table("refund_requests") as batch:
        batch.alter_column("gateway_refund_id", existing_type=sa.String(length=255), type_=sa.String(length=120))
        batch.drop_column("refund_breakdown_json")
