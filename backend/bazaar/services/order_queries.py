from __future__ import annotations

import functools

from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.models import EscrowStatus, Order
from bazaar.models.enums import coerce_enum
from bazaar.services.errors import CapabilityMissing, PermissionDenied, ValidationError
from bazaar.services.escrow_state_machine import ActorRole, EscrowSnapshot, allowed_actions
from bazaar.services.identity import Actor
from bazaar.services.order_store import OrderStore, is_missing_schema_error
from bazaar.services.transition_strategies import ATOMIC_MIGRATION_REVISION

ESCROW_LABELS = {
    EscrowStatus.PENDING_RECEIPT: "Pending Receipt Verification",
    EscrowStatus.FUNDS_HELD: "Funds Held In Escrow",
    EscrowStatus.DISPUTED: "Disputed",
    EscrowStatus.RELEASED_TO_SELLER: "Released To Seller",
    EscrowStatus.REFUNDED_TO_BUYER: "Refunded To Buyer",
}

DESK_FILTERS = tuple(status.value for status in EscrowStatus) + ("all",)
DEFAULT_PAGE_SIZE = 100


def _requires_order_schema(fn):
    """Report a pre-migration ``orders`` table as ``CapabilityMissing``."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as e:
            db.session.rollback()
            if not is_missing_schema_error(e):
                raise
            raise CapabilityMissing(
                f"order reads are unavailable until migration {ATOMIC_MIGRATION_REVISION} is applied"
            ) from e

    return wrapper


def _limit(raw, default: int = DEFAULT_PAGE_SIZE) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return max(1, min(value, 500))


def role_on_order(actor: Actor, order: Order) -> ActorRole | None:
    if actor.is_admin:
        return ActorRole.ADMIN
    if int(order.buyer_id) == actor.user_id:
        return ActorRole.BUYER
    if int(order.seller_id) == actor.user_id:
        return ActorRole.SELLER
    return None


def order_view(order: Order, role: ActorRole) -> dict:
    payload = order.to_dict()
    payload["viewer_role"] = role.value
    payload["allowed_actions"] = allowed_actions(EscrowSnapshot.from_values(order), role)
    return payload


@_requires_order_schema
def load_visible_order(actor: Actor, order_id: str, *, store: OrderStore | None = None) -> tuple[Order, ActorRole]:
    order = (store or OrderStore()).get(order_id)
    role = role_on_order(actor, order)
    if role is None:
        raise PermissionDenied("you are not a participant of this order")
    return order, role


@_requires_order_schema
def orders_for_buyer(actor: Actor, *, limit=None) -> list[dict]:
    rows = (
        Order.query.filter_by(buyer_id=actor.user_id)
        .order_by(Order.created_at.desc())
        .limit(_limit(limit))
        .all()
    )
    return [order_view(o, ActorRole.BUYER) for o in rows]


@_requires_order_schema
def orders_for_seller(actor: Actor, *, limit=None) -> list[dict]:
    rows = (
        Order.query.filter_by(seller_id=actor.user_id)
        .order_by(Order.created_at.desc())
        .limit(_limit(limit))
        .all()
    )
    return [order_view(o, ActorRole.SELLER) for o in rows]


@_requires_order_schema
def escrow_desk(filter_name: str | None, *, limit=None) -> list[dict]:
    """Admin queue. ``filter_name`` is an escrow status or ``all``."""
    name = (filter_name or "pending_receipt").strip().lower()
    if name not in DESK_FILTERS:
        raise ValidationError(f"unknown filter {name!r}; expected one of {', '.join(DESK_FILTERS)}")
    query = Order.query
    if name != "all":
        query = query.filter(Order.escrow_status == EscrowStatus(name))
    rows = query.order_by(Order.created_at.asc()).limit(_limit(limit)).all()
    return [order_view(o, ActorRole.ADMIN) for o in rows]


def receipt_summary(order: Order) -> dict:
    escrow = coerce_enum(EscrowStatus, order.escrow_status, EscrowStatus.PENDING_RECEIPT)
    fee = int(order.delivery_fee_dzd or 0)
    unit_price = int(order.unit_price_dzd or 0)
    subtotal = unit_price * max(int(order.quantity or 1), 1)
    total = int(order.total_price_dzd or subtotal + fee)
    return {
        "order_id": order.id,
        "invoice_no": f"BZ-{order.id[:8].upper()}",
        "buyer_name": f"{order.buyer_first_name or ''} {order.buyer_last_name or ''}".strip() or "Buyer",
        "quantity": int(order.quantity or 0),
        "unit_price_dzd": unit_price,
        "subtotal_dzd": subtotal,
        "delivery_fee_dzd": fee,
        "total_dzd": total,
        "escrow_status": escrow.value,
        "escrow_label": ESCROW_LABELS[escrow],
        "verification": f"order:{order.id}|total_dzd:{total}|escrow:{escrow.value}",
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


def order_timeline(order: Order, *, store: OrderStore | None = None) -> list[dict]:
    created = {
        "action": "order_created",
        "from_status": None,
        "to_status": EscrowStatus.PENDING_RECEIPT.value,
        "actor_type": "buyer",
        "actor_id": int(order.buyer_id),
        "note": "",
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
    entries = [created]
    store = store or OrderStore()
    if not store.has_table("escrow_transitions"):
        return entries
    for row in store.transitions(order.id):
        entry = row.to_dict()
        entry.pop("id", None)
        entry.pop("order_id", None)
        entries.append(entry)
    return entries


def count_by_escrow_status() -> dict:
    rows = db.session.query(Order.escrow_status, db.func.count(Order.id)).group_by(Order.escrow_status).all()
    counts = {status.value: 0 for status in EscrowStatus}
    for status, count in rows:
        escrow = coerce_enum(EscrowStatus, status)
        if escrow is not None:
            counts[escrow.value] = int(count)
    return counts
