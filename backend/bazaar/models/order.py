from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime

from bazaar.extensions import db
from bazaar.models.enums import EscrowStatus, OrderStatus, coerce_enum, enum_values


def _new_order_id() -> str:
    return uuid.uuid4().hex


def _iso(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _int_or_none(value) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def order_payload(values: Mapping, dispute: dict | None = None) -> dict:
    """Wire shape of an order.

    Built from a plain column mapping so ORM rows and raw ``orders`` rows
    read by the fallback transition path serialize identically.
    """
    escrow = coerce_enum(EscrowStatus, values.get("escrow_status"), EscrowStatus.PENDING_RECEIPT)
    status = coerce_enum(OrderStatus, values.get("status"), OrderStatus.PENDING)
    return {
        "id": str(values.get("id") or ""),
        "buyer_id": _int_or_none(values.get("buyer_id")),
        "seller_id": _int_or_none(values.get("seller_id")),
        "item_id": _int_or_none(values.get("item_id")),
        "quantity": int(values.get("quantity") or 0),
        "unit_price_dzd": int(values.get("unit_price_dzd") or 0),
        "delivery_fee_dzd": int(values.get("delivery_fee_dzd") or 0),
        "total_price_dzd": int(values.get("total_price_dzd") or 0),
        "status": status.value,
        "escrow_status": escrow.value,
        "buyer_receipt_url": values.get("buyer_receipt_url") or None,
        "seller_shipping_proof": values.get("seller_shipping_proof") or None,
        "buyer_confirmation": bool(values.get("buyer_confirmation") or False),
        "delivery": {
            "buyer_first_name": values.get("buyer_first_name") or "",
            "buyer_last_name": values.get("buyer_last_name") or "",
            "buyer_phone": values.get("buyer_phone") or None,
            "delivery_address": values.get("delivery_address") or "",
            "delivery_location": values.get("delivery_location") or "",
        },
        "dispute": dispute,
        "created_at": _iso(values.get("created_at")),
        "updated_at": _iso(values.get("updated_at")),
    }


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
        db.CheckConstraint(
            "total_price_dzd = unit_price_dzd * quantity + delivery_fee_dzd",
            name="ck_orders_total_matches_lines",
        ),
    )

    id = db.Column(db.String(32), primary_key=True, default=_new_order_id)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # Copied from the catalog at checkout; item ownership changes do not move orders.
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("marketplace_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_dzd = db.Column(db.Integer, nullable=False)
    delivery_fee_dzd = db.Column(db.Integer, nullable=False, default=0)
    total_price_dzd = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            length=24,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    escrow_status = db.Column(
        db.Enum(
            EscrowStatus,
            name="escrow_status",
            native_enum=False,
            length=32,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=EscrowStatus.PENDING_RECEIPT,
        index=True,
    )

    buyer_receipt_url = db.Column(db.String(1024), nullable=True)
    seller_shipping_proof = db.Column(db.String(1024), nullable=True)
    buyer_confirmation = db.Column(db.Boolean, nullable=False, default=False)

    buyer_first_name = db.Column(db.String(80), nullable=False)
    buyer_last_name = db.Column(db.String(80), nullable=False)
    buyer_phone = db.Column(db.String(32), nullable=True)
    delivery_address = db.Column(db.String(255), nullable=False)
    delivery_location = db.Column(db.String(120), nullable=False)

    # Compare-and-swap token; bumped by every escrow write.
    version = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    dispute = db.relationship("Dispute", uselist=False, viewonly=True)

    def column_values(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    def to_dict(self) -> dict:
        dispute = self.dispute.to_dict() if self.dispute is not None else None
        return order_payload(self.column_values(), dispute)
