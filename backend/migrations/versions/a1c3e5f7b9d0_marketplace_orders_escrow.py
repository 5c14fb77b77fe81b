"""marketplace users, items, orders with escrow status, platform events

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-09-02 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "a1c3e5f7b9d0"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(bind).get_indexes(table_name)
    return any((idx.get("name") or "") == index_name for idx in indexes)


def _ensure_index(bind, table_name: str, column: str, *, unique: bool = False) -> None:
    name = f"ix_{table_name}_{column}"
    if not _index_exists(bind, table_name, name):
        op.create_index(name, table_name, [column], unique=unique)


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _ensure_index(bind, "users", "email", unique=True)

    if not _table_exists(bind, "marketplace_items"):
        op.create_table(
            "marketplace_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("title", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("price_dzd", sa.Integer(), nullable=True),
            sa.Column("wilaya", sa.String(length=64), nullable=True),
            sa.Column("image_url", sa.String(length=1024), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _ensure_index(bind, "marketplace_items", "seller_id")

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("item_id", sa.Integer(), sa.ForeignKey("marketplace_items.id"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price_dzd", sa.Integer(), nullable=False),
            sa.Column("delivery_fee_dzd", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_price_dzd", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
            sa.Column("escrow_status", sa.String(length=32), nullable=False, server_default="pending_receipt"),
            sa.Column("buyer_receipt_url", sa.String(length=1024), nullable=True),
            sa.Column("seller_shipping_proof", sa.String(length=1024), nullable=True),
            sa.Column("buyer_confirmation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("buyer_first_name", sa.String(length=80), nullable=False),
            sa.Column("buyer_last_name", sa.String(length=80), nullable=False),
            sa.Column("buyer_phone", sa.String(length=32), nullable=True),
            sa.Column("delivery_address", sa.String(length=255), nullable=False),
            sa.Column("delivery_location", sa.String(length=120), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
            sa.CheckConstraint(
                "total_price_dzd = unit_price_dzd * quantity + delivery_fee_dzd",
                name="ck_orders_total_matches_lines",
            ),
        )
    for column in ("buyer_id", "seller_id", "item_id", "status", "escrow_status", "created_at"):
        _ensure_index(bind, "orders", column)

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("subject_type", sa.String(length=80), nullable=True),
            sa.Column("subject_id", sa.String(length=120), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
    for column in ("created_at", "event_type", "actor_user_id", "subject_type", "subject_id", "request_id", "severity"):
        _ensure_index(bind, "platform_events", column)


def downgrade():
    bind = op.get_bind()
    for table in ("platform_events", "orders", "marketplace_items", "users"):
        if _table_exists(bind, table):
            op.drop_table(table)
