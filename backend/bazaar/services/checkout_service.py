from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.models import EscrowStatus, Order, OrderStatus
from bazaar.services.errors import CapabilityMissing, CheckoutResult, EscrowError, PermissionDenied, ValidationError
from bazaar.services.identity import Actor
from bazaar.services.item_catalog import CatalogItem, ItemCatalog
from bazaar.services.order_store import is_missing_schema_error
from bazaar.services.pricing import LinePrice, compute_line, summarize_cart
from bazaar.services.transition_strategies import ATOMIC_MIGRATION_REVISION
from bazaar.settings import delivery_fee_per_item
from bazaar.utils.events import log_event

MAX_CART_LINES = 50
MAX_LINE_QUANTITY = 10_000
MAX_ITEM_ID = 2_147_483_647

_DELIVERY_FIELDS = ("buyer_first_name", "buyer_last_name", "delivery_address", "delivery_location")
_DELIVERY_LIMITS = {
    "buyer_first_name": 80,
    "buyer_last_name": 80,
    "delivery_address": 255,
    "delivery_location": 120,
}


def _positive_int(value, field_name: str, maximum: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a positive integer")
    if isinstance(value, str):
        raw = value.strip()
        if not (raw.isascii() and raw.isdigit()) or len(raw) > len(str(maximum)):
            raise ValidationError(f"{field_name} must be a positive integer")
        value = int(raw)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer")
    if value > maximum:
        raise ValidationError(f"{field_name} must be at most {maximum}")
    return value


@dataclass(frozen=True)
class CheckoutLine:
    item_id: int
    quantity: int = 1

    @classmethod
    def from_payload(cls, payload, *, position: int = 1) -> "CheckoutLine":
        if not isinstance(payload, dict):
            raise ValidationError(f"line {position}: expected an object")
        return cls(
            item_id=_positive_int(payload.get("item_id"), f"line {position}: item_id", MAX_ITEM_ID),
            quantity=_positive_int(payload.get("quantity", 1), f"line {position}: quantity", MAX_LINE_QUANTITY),
        )


def parse_lines(raw) -> list[CheckoutLine]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty list")
    if len(raw) > MAX_CART_LINES:
        raise ValidationError(f"a cart holds at most {MAX_CART_LINES} lines")
    return [CheckoutLine.from_payload(entry, position=i) for i, entry in enumerate(raw, start=1)]


@dataclass(frozen=True)
class DeliveryDetails:
    buyer_first_name: str
    buyer_last_name: str
    delivery_address: str
    delivery_location: str
    buyer_phone: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "DeliveryDetails":
        values = {}
        missing = []
        for name in _DELIVERY_FIELDS:
            value = str(payload.get(name) or "").strip()
            if not value:
                missing.append(name)
            values[name] = value[: _DELIVERY_LIMITS[name]]
        if missing:
            raise ValidationError(f"missing delivery fields: {', '.join(missing)}")
        phone = str(payload.get("buyer_phone") or "").strip()[:32] or None
        return cls(buyer_phone=phone, **values)


@dataclass(frozen=True)
class PricedLine:
    line: CheckoutLine
    item: CatalogItem
    price: LinePrice

    def to_dict(self) -> dict:
        return {
            "item_id": self.item.item_id,
            "seller_id": self.item.seller_id,
            "title": self.item.title,
            "quantity": self.line.quantity,
            "unit_price_dzd": self.item.unit_price,
            **self.price.to_dict(),
        }


@dataclass
class QuoteResult:
    ok: bool
    lines: list = field(default_factory=list)
    summary: dict | None = None
    error: str | None = None
    message: str = ""
    http_status: int = 200

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "lines": self.lines, "summary": self.summary}
        return {"ok": False, "error": self.error, "message": self.message}


class CheckoutService:
    """Turns cart lines into independent escrow orders, one per line.

    Every line is priced and checked before the first row is written, so a
    bad line rejects the whole request.
    """

    def __init__(self, actor: Actor | None, *, catalog: ItemCatalog | None = None, fee_per_item: int | None = None):
        self.actor = actor
        self.catalog = catalog or ItemCatalog()
        self.fee_per_item = delivery_fee_per_item() if fee_per_item is None else int(fee_per_item)

    def price_lines(self, lines: list[CheckoutLine]) -> list[PricedLine]:
        priced = []
        for position, line in enumerate(lines, start=1):
            item = self.catalog.get(line.item_id)
            if item is None or not item.is_active:
                raise ValidationError(f"line {position}: item {line.item_id} is not available")
            if item.unit_price is None or item.unit_price <= 0:
                raise ValidationError(f"line {position}: item {line.item_id} has no valid price")
            if self.actor is not None and item.seller_id == self.actor.user_id:
                raise ValidationError(f"line {position}: you cannot buy your own item")
            price = compute_line(item.unit_price, line.quantity, self.fee_per_item)
            priced.append(PricedLine(line=line, item=item, price=price))
        return priced

    def quote(self, raw_lines) -> QuoteResult:
        try:
            priced = self.price_lines(parse_lines(raw_lines))
        except EscrowError as e:
            return QuoteResult(ok=False, error=e.code, message=e.message, http_status=int(e.http_status))
        summary = summarize_cart([p.price for p in priced])
        return QuoteResult(ok=True, lines=[p.to_dict() for p in priced], summary=summary.to_dict())

    def place(self, raw_lines, payload: dict) -> CheckoutResult:
        try:
            if self.actor is None:
                raise PermissionDenied("authentication required")
            delivery = DeliveryDetails.from_payload(payload or {})
            priced = self.price_lines(parse_lines(raw_lines))
        except EscrowError as e:
            return CheckoutResult.failure(e)

        orders = []
        try:
            for entry in priced:
                order = Order(
                    buyer_id=self.actor.user_id,
                    seller_id=entry.item.seller_id,
                    item_id=entry.item.item_id,
                    quantity=entry.line.quantity,
                    unit_price_dzd=entry.item.unit_price,
                    delivery_fee_dzd=entry.price.fee,
                    total_price_dzd=entry.price.total,
                    status=OrderStatus.PENDING,
                    escrow_status=EscrowStatus.PENDING_RECEIPT,
                    buyer_confirmation=False,
                    buyer_first_name=delivery.buyer_first_name,
                    buyer_last_name=delivery.buyer_last_name,
                    buyer_phone=delivery.buyer_phone,
                    delivery_address=delivery.delivery_address,
                    delivery_location=delivery.delivery_location,
                )
                db.session.add(order)
                orders.append(order)
            db.session.flush()
            for order in orders:
                log_event(
                    "order_created",
                    actor_user_id=self.actor.user_id,
                    subject_type="order",
                    subject_id=order.id,
                    metadata={
                        "item_id": order.item_id,
                        "seller_id": order.seller_id,
                        "total_price_dzd": order.total_price_dzd,
                    },
                )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            if not is_missing_schema_error(e):
                raise
            current_app.logger.warning("checkout_schema_missing err=%s", e)
            return CheckoutResult.failure(
                CapabilityMissing(f"checkout is unavailable until migration {ATOMIC_MIGRATION_REVISION} is applied")
            )
        return CheckoutResult.success([order.to_dict() for order in orders])
