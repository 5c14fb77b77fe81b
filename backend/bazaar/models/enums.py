from __future__ import annotations

import enum


class EscrowStatus(str, enum.Enum):
    PENDING_RECEIPT = "pending_receipt"
    FUNDS_HELD = "funds_held"
    DISPUTED = "disputed"
    RELEASED_TO_SELLER = "released_to_seller"
    REFUNDED_TO_BUYER = "refunded_to_buyer"

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.RELEASED_TO_SELLER, EscrowStatus.REFUNDED_TO_BUYER)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def coerce_enum(enum_cls, value, default=None):
    """Map a stored value (member, raw string, mixed case) onto ``enum_cls``.

    Rows written by older clients or by the raw-SQL fallback carry plain
    strings; unknown values map to ``default``.
    """
    if isinstance(value, enum_cls):
        return value
    raw = (str(value) if value is not None else "").strip().lower()
    if raw == "canceled":
        raw = "cancelled"
    try:
        return enum_cls(raw)
    except ValueError:
        return default
