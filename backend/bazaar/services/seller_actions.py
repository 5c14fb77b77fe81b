from __future__ import annotations

from bazaar.services.errors import TransitionResult
from bazaar.services.escrow_state_machine import ActorRole, EscrowAction
from bazaar.services.participant_actions import ParticipantActionService


class SellerActionService(ParticipantActionService):
    role = ActorRole.SELLER

    def mark_shipped(self, order_id: str, proof_ref: str | None) -> TransitionResult:
        # Shipping without proof is rejected by the state machine, not here.
        return self._run(
            EscrowAction.MARK_SHIPPED,
            order_id,
            evidence_label="proof_url",
            evidence=proof_ref,
        )
