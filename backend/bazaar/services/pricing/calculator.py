from __future__ import annotations

from dataclasses import dataclass

from bazaar.services.errors import ValidationError

# Upper bound of the 32-bit INTEGER amount columns on orders.
MAX_AMOUNT_DZD = 2_147_483_647


@dataclass(frozen=True)
class LinePrice:
    subtotal: int
    fee: int
    total: int

    def to_dict(self) -> dict:
        return {"subtotal": self.subtotal, "fee": self.fee, "total": self.total}


@dataclass(frozen=True)
class CartSummary:
    line_count: int
    subtotal: int
    fees: int
    total: int

    def to_dict(self) -> dict:
        return {
            "line_count": self.line_count,
            "subtotal": self.subtotal,
            "fees": self.fees,
            "total": self.total,
        }


def _strict_int(value, field_name: str) -> int:
    # bool is an int subclass; a JSON true must not price as 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer amount")
    return value


def compute_line(unit_price: int, quantity: int, delivery_fee_per_item: int) -> LinePrice:
    """Price one checkout line in the smallest currency unit.

    The delivery fee is flat per catalog item, not per unit:
    ``total = unit_price * quantity + delivery_fee_per_item``.
    """
    unit_price = _strict_int(unit_price, "unit_price")
    quantity = _strict_int(quantity, "quantity")
    fee = _strict_int(delivery_fee_per_item, "delivery_fee")
    if unit_price <= 0:
        raise ValidationError("unit_price must be positive")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    if fee < 0:
        raise ValidationError("delivery_fee must not be negative")
    subtotal = unit_price * quantity
    total = subtotal + fee
    if total > MAX_AMOUNT_DZD:
        raise ValidationError(f"line total exceeds {MAX_AMOUNT_DZD} DZD")
    return LinePrice(subtotal=subtotal, fee=fee, total=total)


def summarize_cart(lines: list[LinePrice]) -> CartSummary:
    """Client-facing cart totals. Never persisted; each line is its own order."""
    subtotal = sum(line.subtotal for line in lines)
    fees = sum(line.fee for line in lines)
    return CartSummary(line_count=len(lines), subtotal=subtotal, fees=fees, total=subtotal + fees)
