"""escrow atomic transitions: orders.version and the transition ledger

Until this revision is applied the admin escrow desk runs in degraded mode
(direct field updates, no compare-and-swap) and buyer/seller actions report
that a migration is required.

Revision ID: c3e5a7b9d1f2
Revises: b2d4f6a8c0e1
Create Date: 2026-09-23 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "c3e5a7b9d1f2"
down_revision = "b2d4f6a8c0e1"
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def _column_exists(bind, table_name: str, column_name: str) -> bool:
    cols = sa.inspect(bind).get_columns(table_name)
    return any((c.get("name") or "") == column_name for c in cols)


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(bind).get_indexes(table_name)
    return any((idx.get("name") or "") == index_name for idx in indexes)


def upgrade():
    bind = op.get_bind()

    if _table_exists(bind, "orders") and not _column_exists(bind, "orders", "version"):
        with op.batch_alter_table("orders") as batch:
            batch.add_column(sa.Column("version", sa.Integer(), nullable=False, server_default="1"))

    if not _table_exists(bind, "escrow_transitions"):
        op.create_table(
            "escrow_transitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.String(length=32), nullable=False),
            sa.Column("action", sa.String(length=32), nullable=False),
            sa.Column("from_status", sa.String(length=32), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=32), nullable=False),
            sa.Column("order_status", sa.String(length=24), nullable=False, server_default=""),
            sa.Column("actor_type", sa.String(length=16), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=160), nullable=False),
            sa.Column("note", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_id", "idempotency_key", name="uq_escrow_transition_order_key"),
        )
    if not _index_exists(bind, "escrow_transitions", "ix_escrow_transitions_order_id"):
        op.create_index("ix_escrow_transitions_order_id", "escrow_transitions", ["order_id"], unique=False)


def downgrade():
    bind = op.get_bind()
    if _table_exists(bind, "escrow_transitions"):
        op.drop_table("escrow_transitions")
    if _table_exists(bind, "orders") and _column_exists(bind, "orders", "version"):
        with op.batch_alter_table("orders") as batch:
            batch.drop_column("version")
