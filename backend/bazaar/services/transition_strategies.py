"""How an escrow decision reaches the database.

``AtomicTransitionStrategy`` is the normal path: lock, decide, compare-and-swap,
ledger row, one commit. ``DegradedTransitionStrategy`` exists for deployments
whose schema has not reached the escrow-atomic revision yet; it writes
``escrow_status``/``status`` directly and gives up the compare-and-swap
guarantee. Which one runs is decided by ``check_atomic_capability``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.models import order_payload
from bazaar.services.errors import CapabilityMissing, NotFoundError, PermissionDenied
from bazaar.services.escrow_state_machine import (
    ActorRole,
    Decision,
    EscrowAction,
    EscrowSnapshot,
    decide,
)
from bazaar.services.order_store import OrderStore, is_missing_schema_error
from bazaar.settings import escrow_capability_cache_seconds, escrow_force_degraded
from bazaar.utils.events import log_event

ATOMIC_MIGRATION_REVISION = "c3e5a7b9d1f2"
_CACHE_KEY = "bazaar_escrow_capability"

# (table, column) pairs the atomic path writes; column None means the table itself.
_ATOMIC_REQUIREMENTS = (
    ("orders", "escrow_status"),
    ("orders", "version"),
    ("disputes", None),
    ("escrow_transitions", None),
)


@dataclass(frozen=True)
class TransitionCommand:
    order_id: str
    action: EscrowAction
    role: ActorRole
    actor_id: int | None
    evidence: str | None = None
    note: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CapabilityReport:
    atomic: bool
    forced_degraded: bool = False
    missing: tuple = field(default_factory=tuple)
    checked_at: float = 0.0

    @property
    def mode(self) -> str:
        return "atomic" if self.atomic else "degraded"

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "atomic_transitions": bool(self.atomic),
            "forced_degraded": bool(self.forced_degraded),
            "missing": list(self.missing),
            "migration_required": ATOMIC_MIGRATION_REVISION if self.missing else None,
        }


def _missing_schema_objects() -> tuple:
    insp = inspect(db.session.connection())
    tables = set(insp.get_table_names())
    columns: dict[str, set] = {}
    missing = []
    for table, column in _ATOMIC_REQUIREMENTS:
        if table not in tables:
            if table not in missing:
                missing.append(table)
            continue
        if column is None:
            continue
        if table not in columns:
            columns[table] = {str(c.get("name", "")).lower() for c in insp.get_columns(table)}
        if column not in columns[table]:
            missing.append(f"{table}.{column}")
    return tuple(missing)


def check_atomic_capability(*, refresh: bool = False) -> CapabilityReport:
    """Inspect the live schema; cached per app for ESCROW_CAPABILITY_CACHE_SECONDS."""
    ttl = escrow_capability_cache_seconds()
    now = time.monotonic()
    cached = current_app.extensions.get(_CACHE_KEY)
    if not refresh and cached is not None and ttl > 0 and now - cached.checked_at < ttl:
        return cached

    missing = _missing_schema_objects()
    forced = escrow_force_degraded()
    report = CapabilityReport(
        atomic=not missing and not forced,
        forced_degraded=forced,
        missing=missing,
        checked_at=now,
    )
    if cached is None or cached.atomic != report.atomic:
        current_app.logger.info(
            "escrow_capability_checked mode=%s missing=%s forced=%s",
            report.mode,
            ",".join(missing) or "-",
            int(forced),
        )
    current_app.extensions[_CACHE_KEY] = report
    return report


def reset_capability_cache() -> None:
    current_app.extensions.pop(_CACHE_KEY, None)


def _check_participant(buyer_id, seller_id, command: TransitionCommand) -> None:
    if command.role == ActorRole.ADMIN:
        return
    owner = buyer_id if command.role == ActorRole.BUYER else seller_id
    if owner is None or command.actor_id is None or int(owner) != int(command.actor_id):
        raise PermissionDenied(
            f"only the order's {command.role.value} may {command.action.value}",
            action=command.action,
        )


def _field_changes(decision: Decision, command: TransitionCommand) -> dict:
    changes = {"escrow_status": decision.to_state}
    if decision.status_after is not None:
        changes["status"] = decision.status_after
    if decision.action == EscrowAction.SUBMIT_RECEIPT:
        changes["buyer_receipt_url"] = (command.evidence or "").strip()
    elif decision.action == EscrowAction.MARK_SHIPPED:
        changes["seller_shipping_proof"] = (command.evidence or "").strip()
    elif decision.action == EscrowAction.CONFIRM_DELIVERY:
        changes["buyer_confirmation"] = True
    return changes


class TransitionStrategy:
    name = "unknown"

    def __init__(self, store: OrderStore | None = None):
        self.store = store or OrderStore()

    def apply(self, command: TransitionCommand) -> dict:
        raise NotImplementedError


class AtomicTransitionStrategy(TransitionStrategy):
    name = "atomic"

    def apply(self, command: TransitionCommand) -> dict:
        order = self.store.get_for_update(command.order_id)
        _check_participant(order.buyer_id, order.seller_id, command)
        decision = decide(
            EscrowSnapshot.from_values(order),
            command.role,
            command.action,
            evidence=command.evidence,
        )
        from_version = int(order.version or 1)
        self.store.compare_and_set(
            order,
            expected_status=decision.from_state,
            expected_version=from_version,
            changes=_field_changes(decision, command),
            action=decision.action,
        )

        if decision.action == EscrowAction.OPEN_DISPUTE:
            self.store.open_dispute(
                order,
                reason=command.reason or "",
                opened_by_user_id=command.actor_id,
                opened_by_role=command.role.value,
            )
            log_event(
                "dispute_opened",
                actor_user_id=command.actor_id,
                subject_type="order",
                subject_id=order.id,
                metadata={"role": command.role, "from": decision.from_state},
            )
        elif decision.resolves_dispute:
            self.store.resolve_dispute(
                order,
                action=decision.action.value,
                note=command.note,
                resolved_by_user_id=command.actor_id,
            )

        status_after = decision.status_after.value if decision.status_after else ""
        self.store.append_transition(
            order,
            action=decision.action.value,
            from_status=decision.from_state.value,
            to_status=decision.to_state.value,
            order_status=status_after,
            actor_type=command.role.value,
            actor_id=command.actor_id,
            from_version=from_version,
            note=command.note or command.reason,
        )
        log_event(
            "escrow_transition_applied",
            actor_user_id=command.actor_id,
            subject_type="order",
            subject_id=order.id,
            metadata={
                "action": decision.action,
                "from": decision.from_state,
                "to": decision.to_state,
                "version": from_version + 1,
            },
        )
        db.session.commit()
        return self.store.get(command.order_id).to_dict()


class DegradedTransitionStrategy(TransitionStrategy):
    """Direct field update for admin actions on a pre-migration schema.

    The guard is evaluated once against a plain SELECT; the UPDATE that
    follows is unconditional, so a concurrent writer can be overwritten.
    """

    name = "degraded"

    def apply(self, command: TransitionCommand, *, cause: str = "capability_check") -> dict:
        row = self.store.read_row(command.order_id)
        if row is None:
            raise NotFoundError(f"order {command.order_id} not found")
        _check_participant(row.get("buyer_id"), row.get("seller_id"), command)
        decision = decide(
            EscrowSnapshot.from_values(row),
            command.role,
            command.action,
            evidence=command.evidence,
        )

        fields = {"escrow_status": decision.to_state.value, "updated_at": datetime.utcnow()}
        if decision.status_after is not None:
            fields["status"] = decision.status_after.value
        if row.get("version") is not None:
            fields["version"] = int(row["version"]) + 1
        try:
            self.store.raw_update(command.order_id, fields)
            if decision.resolves_dispute:
                self.store.raw_resolve_dispute(command.order_id, action=decision.action.value, note=command.note)
        except SQLAlchemyError as e:
            db.session.rollback()
            if is_missing_schema_error(e):
                raise CapabilityMissing(
                    f"{command.action.value} cannot run on this schema; migration required "
                    f"(alembic upgrade to {ATOMIC_MIGRATION_REVISION})",
                    action=command.action,
                    current_state=decision.from_state,
                ) from e
            raise

        current_app.logger.warning(
            "escrow_transition_degraded order_id=%s action=%s from=%s to=%s cause=%s",
            command.order_id,
            decision.action.value,
            decision.from_state.value,
            decision.to_state.value,
            cause,
        )
        log_event(
            "escrow_transition_degraded",
            actor_user_id=command.actor_id,
            subject_type="order",
            subject_id=command.order_id,
            severity="WARNING",
            metadata={
                "action": decision.action,
                "from": decision.from_state,
                "to": decision.to_state,
                "cause": cause,
            },
        )
        db.session.commit()
        fresh = self.store.read_row(command.order_id) or row
        return order_payload(fresh, self.store.read_dispute_row(command.order_id))


def select_strategy(report: CapabilityReport, store: OrderStore | None = None) -> TransitionStrategy:
    if report.atomic:
        return AtomicTransitionStrategy(store)
    return DegradedTransitionStrategy(store)
