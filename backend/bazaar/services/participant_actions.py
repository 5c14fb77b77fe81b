from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.integrations.blob_store.base import BlobStore
from bazaar.integrations.blob_store.factory import build_blob_store
from bazaar.services.errors import (
    CapabilityMissing,
    EscrowError,
    PermissionDenied,
    TransitionResult,
    ValidationError,
)
from bazaar.services.escrow_state_machine import ActorRole, EscrowAction
from bazaar.services.identity import Actor
from bazaar.services.order_store import OrderStore, is_missing_schema_error
from bazaar.services.transition_strategies import (
    ATOMIC_MIGRATION_REVISION,
    AtomicTransitionStrategy,
    TransitionCommand,
    check_atomic_capability,
)


def _optional_text(value, field_name: str, action: EscrowAction) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", action=action)
    return value.strip()


def _migration_required(action: EscrowAction) -> CapabilityMissing:
    return CapabilityMissing(
        f"{action.value} is unavailable until migration {ATOMIC_MIGRATION_REVISION} is applied",
        action=action,
    )


class ParticipantActionService:
    """Shared plumbing for buyer and seller actions.

    Participants only ever go through the atomic strategy; there is no
    degraded path for them.
    """

    role: ActorRole = ActorRole.BUYER

    def __init__(self, actor: Actor | None, *, store: OrderStore | None = None, blob_store: BlobStore | None = None):
        self.actor = actor
        self.store = store or OrderStore()
        self._blob_store = blob_store

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = build_blob_store()
        return self._blob_store

    def _blob_reference(self, ref, *, label: str, action: EscrowAction) -> str | None:
        value = _optional_text(ref, label, action)
        if not value:
            # Missing evidence is a guard failure, reported with the escrow state.
            return None
        normalized = self.blob_store.normalize(value)
        if normalized is None:
            raise ValidationError(f"{label} is not a valid upload reference")
        return normalized.url

    def _run(self, action: EscrowAction, order_id: str, *, evidence_label: str = "", evidence=None, reason=None) -> TransitionResult:
        try:
            if self.actor is None:
                raise PermissionDenied("authentication required", action=action)
            if evidence_label:
                evidence = self._blob_reference(evidence, label=evidence_label, action=action)
            if not check_atomic_capability().atomic:
                raise _migration_required(action)
            command = TransitionCommand(
                order_id=str(order_id),
                action=action,
                role=self.role,
                actor_id=self.actor.user_id,
                evidence=evidence,
                reason=reason,
            )
            return TransitionResult.success(action, AtomicTransitionStrategy(self.store).apply(command))
        except EscrowError as e:
            db.session.rollback()
            return TransitionResult.failure(e, action)
        except SQLAlchemyError as e:
            db.session.rollback()
            if is_missing_schema_error(e):
                return TransitionResult.failure(_migration_required(action), action)
            raise

    def open_dispute(self, order_id: str, reason: str) -> TransitionResult:
        try:
            cleaned = _optional_text(reason, "reason", EscrowAction.OPEN_DISPUTE)
            if not cleaned:
                raise ValidationError("dispute reason is required", action=EscrowAction.OPEN_DISPUTE)
        except ValidationError as e:
            return TransitionResult.failure(e)
        return self._run(EscrowAction.OPEN_DISPUTE, order_id, reason=cleaned[:500])
