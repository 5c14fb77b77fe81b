"""Escrow transition table.

Pure decision logic: given a snapshot of an order, the role the caller acts
in for that order and the requested action, return the next escrow state or
raise ``GuardViolation``. Nothing here touches storage; callers read the
current row, ask ``decide`` and then write conditionally.

    pending_receipt --submit_receipt(buyer)--------> pending_receipt
    pending_receipt --verify_funds(admin)----------> funds_held
    funds_held      --mark_shipped(seller)---------> funds_held (status shipped)
    funds_held      --confirm_delivery(buyer)------> released_to_seller
    funds_held      --release_to_seller(admin)-----> released_to_seller
    funds_held      --refund_buyer(admin)----------> refunded_to_buyer
    pending_receipt,
    funds_held      --open_dispute(buyer|seller)---> disputed
    disputed        --release_to_seller(admin)-----> released_to_seller
    disputed        --refund_buyer(admin)----------> refunded_to_buyer
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable

from bazaar.models.enums import EscrowStatus, OrderStatus, coerce_enum
from bazaar.services.errors import GuardViolation, ValidationError


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class EscrowAction(str, enum.Enum):
    SUBMIT_RECEIPT = "submit_receipt"
    VERIFY_FUNDS = "verify_funds"
    MARK_SHIPPED = "mark_shipped"
    CONFIRM_DELIVERY = "confirm_delivery"
    RELEASE_TO_SELLER = "release_to_seller"
    REFUND_BUYER = "refund_buyer"
    OPEN_DISPUTE = "open_dispute"


ADMIN_ACTIONS = frozenset(
    {EscrowAction.VERIFY_FUNDS, EscrowAction.RELEASE_TO_SELLER, EscrowAction.REFUND_BUYER}
)


def parse_action(raw) -> EscrowAction:
    action = coerce_enum(EscrowAction, raw)
    if action is None:
        raise ValidationError(f"unknown escrow action {raw!r}")
    return action


@dataclass(frozen=True)
class EscrowSnapshot:
    escrow_status: EscrowStatus
    status: OrderStatus
    has_receipt: bool
    has_shipping_proof: bool

    @classmethod
    def from_values(cls, values) -> "EscrowSnapshot":
        """Build from an ``Order`` or any mapping of its columns."""
        getter = values.get if hasattr(values, "get") else (lambda key: getattr(values, key, None))
        return cls(
            escrow_status=coerce_enum(EscrowStatus, getter("escrow_status"), EscrowStatus.PENDING_RECEIPT),
            status=coerce_enum(OrderStatus, getter("status"), OrderStatus.PENDING),
            has_receipt=bool((getter("buyer_receipt_url") or "").strip()),
            has_shipping_proof=bool((getter("seller_shipping_proof") or "").strip()),
        )


@dataclass(frozen=True)
class Decision:
    action: EscrowAction
    role: ActorRole
    from_state: EscrowStatus
    to_state: EscrowStatus
    # None keeps the business status as it is.
    status_after: OrderStatus | None

    @property
    def resolves_dispute(self) -> bool:
        return self.from_state == EscrowStatus.DISPUTED and self.to_state.is_terminal


Guard = Callable[[EscrowSnapshot, str], "str | None"]


def _no_guard(snapshot: EscrowSnapshot, evidence: str) -> str | None:
    return None


def _receipt_submittable(snapshot: EscrowSnapshot, evidence: str) -> str | None:
    if snapshot.has_receipt:
        return "receipt already submitted"
    if not evidence:
        return "receipt reference required"
    return None


def _receipt_present(snapshot: EscrowSnapshot, evidence: str) -> str | None:
    if not snapshot.has_receipt:
        return "buyer receipt not submitted"
    return None


def _shipment_markable(snapshot: EscrowSnapshot, evidence: str) -> str | None:
    if snapshot.has_shipping_proof:
        return "shipping proof already attached"
    if not evidence:
        return "shipping proof required"
    return None


def _shipment_seen(snapshot: EscrowSnapshot, evidence: str) -> str | None:
    if snapshot.status == OrderStatus.SHIPPED or snapshot.has_shipping_proof:
        return None
    return "order has not been shipped"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset
    action: EscrowAction
    roles: frozenset
    # None keeps the escrow state (attachments only).
    target: EscrowStatus | None
    status_after: OrderStatus | None
    guard: Guard = _no_guard


_PENDING = EscrowStatus.PENDING_RECEIPT
_HELD = EscrowStatus.FUNDS_HELD
_DISPUTED = EscrowStatus.DISPUTED

TRANSITIONS: tuple[TransitionRule, ...] = (
    TransitionRule(frozenset({_PENDING}), EscrowAction.SUBMIT_RECEIPT, frozenset({ActorRole.BUYER}),
                   None, None, _receipt_submittable),
    TransitionRule(frozenset({_PENDING}), EscrowAction.VERIFY_FUNDS, frozenset({ActorRole.ADMIN}),
                   _HELD, None, _receipt_present),
    TransitionRule(frozenset({_HELD}), EscrowAction.MARK_SHIPPED, frozenset({ActorRole.SELLER}),
                   None, OrderStatus.SHIPPED, _shipment_markable),
    TransitionRule(frozenset({_HELD}), EscrowAction.CONFIRM_DELIVERY, frozenset({ActorRole.BUYER}),
                   EscrowStatus.RELEASED_TO_SELLER, OrderStatus.DELIVERED, _shipment_seen),
    TransitionRule(frozenset({_HELD, _DISPUTED}), EscrowAction.RELEASE_TO_SELLER, frozenset({ActorRole.ADMIN}),
                   EscrowStatus.RELEASED_TO_SELLER, OrderStatus.DELIVERED),
    TransitionRule(frozenset({_HELD, _DISPUTED}), EscrowAction.REFUND_BUYER, frozenset({ActorRole.ADMIN}),
                   EscrowStatus.REFUNDED_TO_BUYER, OrderStatus.REFUNDED),
    TransitionRule(frozenset({_PENDING, _HELD}), EscrowAction.OPEN_DISPUTE,
                   frozenset({ActorRole.BUYER, ActorRole.SELLER}), _DISPUTED, OrderStatus.DISPUTED),
)


def _rule_for(state: EscrowStatus, action: EscrowAction) -> TransitionRule | None:
    for rule in TRANSITIONS:
        if rule.action == action and state in rule.sources:
            return rule
    return None


def can_transition(current: EscrowStatus, role: ActorRole, action: EscrowAction) -> EscrowStatus | None:
    """Edge lookup only: the next state if the table has a row for it, else None.

    Field preconditions (receipt attached, proof supplied, ...) are checked
    by ``decide``.
    """
    current = coerce_enum(EscrowStatus, current)
    if current is None or current.is_terminal:
        return None
    rule = _rule_for(current, action)
    if rule is None or role not in rule.roles:
        return None
    return rule.target or current


def decide(snapshot: EscrowSnapshot, role: ActorRole, action: EscrowAction, *, evidence: str | None = None) -> Decision:
    current = snapshot.escrow_status
    if current.is_terminal:
        raise GuardViolation(action, current, "escrow is settled")
    rule = _rule_for(current, action)
    if rule is None:
        raise GuardViolation(action, current)
    if role not in rule.roles:
        allowed = "/".join(sorted(r.value for r in rule.roles))
        raise GuardViolation(action, current, f"only {allowed} may do this")
    reason = rule.guard(snapshot, (evidence or "").strip())
    if reason:
        raise GuardViolation(action, current, reason)
    return Decision(
        action=action,
        role=role,
        from_state=current,
        to_state=rule.target or current,
        status_after=rule.status_after,
    )


def allowed_actions(snapshot: EscrowSnapshot, role: ActorRole) -> list[str]:
    """Actions ``role`` could take right now, ignoring evidence still to be supplied."""
    out = []
    for action in EscrowAction:
        try:
            decide(snapshot, role, action, evidence="pending")
        except GuardViolation:
            continue
        out.append(action.value)
    return out
