from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.services.errors import EscrowError, TransitionResult, ValidationError
from bazaar.services.escrow_state_machine import ADMIN_ACTIONS, ActorRole, EscrowAction, parse_action
from bazaar.services.identity import Actor, require_admin
from bazaar.services.order_store import OrderStore, is_missing_schema_error
from bazaar.services.transition_strategies import (
    DegradedTransitionStrategy,
    TransitionCommand,
    check_atomic_capability,
    reset_capability_cache,
    select_strategy,
)


class AdminEscrowService:
    """Privileged escrow rulings: verify funds, release, refund.

    Uses the atomic strategy whenever the schema supports it. On a schema
    that predates the escrow-atomic migration (or when an atomic attempt hits
    a missing table/column) the degraded strategy runs instead; callers get
    the same ``TransitionResult`` either way.
    """

    def __init__(self, actor: Actor | None, *, store: OrderStore | None = None):
        self.actor = actor
        self.store = store or OrderStore()

    def verify_funds(self, order_id: str, note: str | None = None) -> TransitionResult:
        return self.run(EscrowAction.VERIFY_FUNDS, order_id, note=note)

    def release_to_seller(self, order_id: str, note: str | None = None) -> TransitionResult:
        return self.run(EscrowAction.RELEASE_TO_SELLER, order_id, note=note)

    def refund_buyer(self, order_id: str, note: str | None = None) -> TransitionResult:
        return self.run(EscrowAction.REFUND_BUYER, order_id, note=note)

    def run(self, action, order_id: str, *, note: str | None = None) -> TransitionResult:
        try:
            admin = require_admin(self.actor)
            parsed = parse_action(action)
            if parsed not in ADMIN_ACTIONS:
                raise ValidationError(f"{parsed.value} is not an admin action", action=parsed)
            if note is not None and not isinstance(note, str):
                raise ValidationError("note must be a string", action=parsed)
            command = TransitionCommand(
                order_id=str(order_id),
                action=parsed,
                role=ActorRole.ADMIN,
                actor_id=admin.user_id,
                note=(note or "").strip()[:500] or None,
            )
            return TransitionResult.success(parsed, self._apply(command))
        except EscrowError as e:
            db.session.rollback()
            return TransitionResult.failure(e, action)
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def _apply(self, command: TransitionCommand) -> dict:
        report = check_atomic_capability()
        strategy = select_strategy(report, self.store)
        if not report.atomic:
            return strategy.apply(command, cause="forced" if report.forced_degraded else "capability_check")
        try:
            return strategy.apply(command)
        except SQLAlchemyError as e:
            db.session.rollback()
            if not is_missing_schema_error(e):
                raise
            current_app.logger.warning(
                "escrow_atomic_unavailable order_id=%s action=%s err=%s",
                command.order_id,
                command.action.value,
                e,
            )
            reset_capability_cache()
            return DegradedTransitionStrategy(self.store).apply(command, cause="missing_schema_error")

