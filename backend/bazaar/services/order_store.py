from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, bindparam, inspect, text

from bazaar.extensions import db
from bazaar.models import Dispute, DisputeStatus, EscrowStatus, EscrowTransition, Order
from bazaar.models.enums import coerce_enum
from bazaar.services.errors import ConflictError, NotFoundError

_MISSING_SCHEMA_MARKERS = (
    "no such table",
    "no such column",
    "has no column named",
    "does not exist",
    "undefinedtable",
    "undefinedcolumn",
    "could not find the function",
    "unknown column",
)


def is_missing_schema_error(exc: BaseException) -> bool:
    """True when a database error means a table/column/function is absent."""
    message = f"{type(getattr(exc, 'orig', None) or exc).__name__} {exc}".lower()
    return any(marker in message for marker in _MISSING_SCHEMA_MARKERS)


def _now() -> datetime:
    return datetime.utcnow()


class OrderStore:
    """Persistence boundary for orders.

    Escrow writes go through ``compare_and_set``: the UPDATE only matches
    while the row still carries the escrow state and version it was read
    with, so of two racing writers exactly one lands.
    """

    def get(self, order_id: str) -> Order:
        order = db.session.get(Order, str(order_id))
        if order is None:
            raise NotFoundError(f"order {order_id} not found")
        return order

    def get_for_update(self, order_id: str) -> Order:
        order = (
            Order.query.filter(Order.id == str(order_id))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if order is None:
            raise NotFoundError(f"order {order_id} not found")
        return order

    def compare_and_set(
        self,
        order: Order,
        *,
        expected_status: EscrowStatus,
        expected_version: int,
        changes: dict,
        action=None,
    ) -> int:
        new_version = int(expected_version) + 1
        values = dict(changes)
        values["version"] = new_version
        values["updated_at"] = _now()
        matched = (
            Order.query.filter(
                Order.id == order.id,
                Order.escrow_status == expected_status,
                Order.version == int(expected_version),
            )
            .update(values, synchronize_session=False)
        )
        if matched != 1:
            current = self.current_escrow_status(order.id)
            attempted = getattr(action, "value", action) or "transition"
            raise ConflictError(
                f"{attempted} lost a race on order {order.id}; escrow is now {current.value if current else 'unknown'}",
                action=action,
                current_state=current,
            )
        return new_version

    def current_escrow_status(self, order_id: str) -> EscrowStatus | None:
        raw = db.session.execute(
            text("SELECT escrow_status FROM orders WHERE id = :id"),
            {"id": str(order_id)},
        ).scalar()
        return coerce_enum(EscrowStatus, raw)

    def open_dispute(self, order: Order, *, reason: str, opened_by_user_id: int, opened_by_role: str) -> Dispute:
        dispute = Dispute.query.filter_by(order_id=order.id).first()
        now = _now()
        if dispute is None:
            dispute = Dispute(order_id=order.id, created_at=now)
        dispute.reason = (reason or "")[:500]
        dispute.status = DisputeStatus.OPEN
        dispute.opened_by_user_id = int(opened_by_user_id)
        dispute.opened_by_role = opened_by_role[:16]
        dispute.updated_at = now
        db.session.add(dispute)
        return dispute

    def resolve_dispute(self, order: Order, *, action: str, note: str | None, resolved_by_user_id: int | None) -> Dispute | None:
        dispute = Dispute.query.filter_by(order_id=order.id).first()
        if dispute is None:
            return None
        dispute.status = DisputeStatus.RESOLVED
        dispute.resolution_action = action[:32]
        dispute.resolution_note = (note or "")[:500] or None
        dispute.resolved_by_user_id = resolved_by_user_id
        dispute.updated_at = _now()
        db.session.add(dispute)
        return dispute

    def append_transition(
        self,
        order: Order,
        *,
        action: str,
        from_status: str,
        to_status: str,
        order_status: str,
        actor_type: str,
        actor_id: int | None,
        from_version: int,
        note: str | None = None,
    ) -> EscrowTransition:
        row = EscrowTransition(
            order_id=order.id,
            action=action[:32],
            from_status=from_status,
            to_status=to_status,
            order_status=order_status,
            actor_type=actor_type[:16],
            actor_id=actor_id,
            idempotency_key=f"{action}:v{int(from_version)}"[:160],
            note=(note or "")[:500] or None,
            created_at=_now(),
        )
        db.session.add(row)
        return row

    def transitions(self, order_id: str) -> list[EscrowTransition]:
        return (
            EscrowTransition.query.filter_by(order_id=str(order_id))
            .order_by(EscrowTransition.id.asc())
            .all()
        )

    # Raw access for deployments whose schema predates the atomic path.
    # Only legacy columns are touched so a partially migrated table still works.

    def read_row(self, order_id: str) -> dict | None:
        row = db.session.execute(
            text("SELECT * FROM orders WHERE id = :id"),
            {"id": str(order_id)},
        ).mappings().first()
        return dict(row) if row is not None else None

    def raw_update(self, order_id: str, fields: dict) -> int:
        assignments = ", ".join(f"{name} = :{name}" for name in fields)
        stmt = text(f"UPDATE orders SET {assignments} WHERE id = :id").bindparams(
            *[bindparam(name, type_=DateTime()) for name, value in fields.items() if isinstance(value, datetime)]
        )
        result = db.session.execute(stmt, {**fields, "id": str(order_id)})
        return int(result.rowcount or 0)

    def raw_resolve_dispute(self, order_id: str, *, action: str, note: str | None) -> bool:
        if not self.has_table("disputes"):
            return False
        result = db.session.execute(
            text(
                "UPDATE disputes SET status = :status, resolution_action = :action, "
                "resolution_note = :note, updated_at = :now "
                "WHERE order_id = :id AND status = :open"
            ).bindparams(bindparam("now", type_=DateTime())),
            {
                "status": DisputeStatus.RESOLVED.value,
                "action": action[:32],
                "note": (note or "")[:500] or None,
                "now": _now(),
                "id": str(order_id),
                "open": DisputeStatus.OPEN.value,
            },
        )
        return bool(result.rowcount)

    def read_dispute_row(self, order_id: str) -> dict | None:
        if not self.has_table("disputes"):
            return None
        row = db.session.execute(
            text(
                "SELECT id, reason, status, opened_by_role, resolution_action, resolution_note, updated_at "
                "FROM disputes WHERE order_id = :id"
            ),
            {"id": str(order_id)},
        ).mappings().first()
        if row is None:
            return None
        out = dict(row)
        updated_at = out.get("updated_at")
        out["updated_at"] = updated_at.isoformat() if isinstance(updated_at, datetime) else updated_at
        return out

    def has_table(self, name: str) -> bool:
        return inspect(db.session.connection()).has_table(name)
