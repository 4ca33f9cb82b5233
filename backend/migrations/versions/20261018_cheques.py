"""Add cheques received against cheque collections

Revision ID: 20261018_cheques
Revises: 20261017_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_cheques"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "cheques",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("collection_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("payer_name", sa.String(255), nullable=False),
        sa.Column("bank", sa.String(255), nullable=False),
        sa.Column("cheque_number", sa.String(64), nullable=False),
        sa.Column("cheque_date", sa.Date(), nullable=False),
        sa.Column("deposit_date", sa.Date(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["collection_id"], ["collections.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cheques", schema=None) as batch_op:
        batch_op.create_index("ix_cheques_collection_id", ["collection_id"], unique=False)
        batch_op.create_index("ix_cheques_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_cheques_status", ["status"], unique=False)
        batch_op.create_index("ix_cheques_deposit_date", ["deposit_date"], unique=False)


def downgrade():
    with op.batch_alter_table("cheques", schema=None) as batch_op:
        batch_op.drop_index("ix_cheques_deposit_date")
        batch_op.drop_index("ix_cheques_status")
        batch_op.drop_index("ix_cheques_order_id")
        batch_op.drop_index("ix_cheques_collection_id")

    op.drop_table("cheques")
