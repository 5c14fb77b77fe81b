"""order disputes

Revision ID: b2d4f6a8c0e1
Revises: a1c3e5f7b9d0
Create Date: 2026-09-09 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "b2d4f6a8c0e1"
down_revision = "a1c3e5f7b9d0"
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(bind).get_indexes(table_name)
    return any((idx.get("name") or "") == index_name for idx in indexes)


def upgrade():
    bind = op.get_bind()
    if not _table_exists(bind, "disputes"):
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.String(length=32), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("opened_by_user_id", sa.Integer(), nullable=True),
            sa.Column("opened_by_role", sa.String(length=16), nullable=False, server_default="buyer"),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
            sa.Column("resolution_action", sa.String(length=32), nullable=True),
            sa.Column("resolution_note", sa.String(length=500), nullable=True),
            sa.Column("resolved_by_user_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    if not _index_exists(bind, "disputes", "ix_disputes_order_id"):
        op.create_index("ix_disputes_order_id", "disputes", ["order_id"], unique=True)


def downgrade():
    bind = op.get_bind()
    if _table_exists(bind, "disputes"):
        op.drop_table("disputes")
