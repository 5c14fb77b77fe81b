from __future__ import annotations

from bazaar.services.errors import TransitionResult
from bazaar.services.escrow_state_machine import ActorRole, EscrowAction
from bazaar.services.participant_actions import ParticipantActionService


class BuyerActionService(ParticipantActionService):
    role = ActorRole.BUYER

    def submit_receipt(self, order_id: str, receipt_ref: str | None) -> TransitionResult:
        """Attach the payment receipt. Escrow stays ``pending_receipt`` until an admin verifies it."""
        return self._run(
            EscrowAction.SUBMIT_RECEIPT,
            order_id,
            evidence_label="receipt_url",
            evidence=receipt_ref,
        )

    def confirm_delivery(self, order_id: str) -> TransitionResult:
        return self._run(EscrowAction.CONFIRM_DELIVERY, order_id)
