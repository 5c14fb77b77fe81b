from __future__ import annotations

import unittest

from bazaar.models import EscrowStatus, OrderStatus
from bazaar.services.errors import GuardViolation, ValidationError
from bazaar.services.escrow_state_machine import (
    ActorRole,
    EscrowAction,
    EscrowSnapshot,
    allowed_actions,
    can_transition,
    decide,
    parse_action,
)


def _snapshot(escrow, status=OrderStatus.PENDING, receipt=False, proof=False) -> EscrowSnapshot:
    return EscrowSnapshot(
        escrow_status=escrow,
        status=status,
        has_receipt=receipt,
        has_shipping_proof=proof,
    )


class EscrowStateMachineTestCase(unittest.TestCase):
    def test_table_edges(self):
        cases = [
            (EscrowStatus.PENDING_RECEIPT, ActorRole.BUYER, EscrowAction.SUBMIT_RECEIPT, EscrowStatus.PENDING_RECEIPT),
            (EscrowStatus.PENDING_RECEIPT, ActorRole.ADMIN, EscrowAction.VERIFY_FUNDS, EscrowStatus.FUNDS_HELD),
            (EscrowStatus.FUNDS_HELD, ActorRole.SELLER, EscrowAction.MARK_SHIPPED, EscrowStatus.FUNDS_HELD),
            (EscrowStatus.FUNDS_HELD, ActorRole.BUYER, EscrowAction.CONFIRM_DELIVERY, EscrowStatus.RELEASED_TO_SELLER),
            (EscrowStatus.FUNDS_HELD, ActorRole.ADMIN, EscrowAction.RELEASE_TO_SELLER, EscrowStatus.RELEASED_TO_SELLER),
            (EscrowStatus.FUNDS_HELD, ActorRole.ADMIN, EscrowAction.REFUND_BUYER, EscrowStatus.REFUNDED_TO_BUYER),
            (EscrowStatus.PENDING_RECEIPT, ActorRole.SELLER, EscrowAction.OPEN_DISPUTE, EscrowStatus.DISPUTED),
            (EscrowStatus.FUNDS_HELD, ActorRole.BUYER, EscrowAction.OPEN_DISPUTE, EscrowStatus.DISPUTED),
            (EscrowStatus.DISPUTED, ActorRole.ADMIN, EscrowAction.RELEASE_TO_SELLER, EscrowStatus.RELEASED_TO_SELLER),
            (EscrowStatus.DISPUTED, ActorRole.ADMIN, EscrowAction.REFUND_BUYER, EscrowStatus.REFUNDED_TO_BUYER),
        ]
        for current, role, action, expected in cases:
            with self.subTest(current=current.value, action=action.value):
                self.assertEqual(can_transition(current, role, action), expected)

    def test_no_direct_jump_from_pending_receipt_to_release(self):
        for role in ActorRole:
            self.assertIsNone(can_transition(EscrowStatus.PENDING_RECEIPT, role, EscrowAction.RELEASE_TO_SELLER))
            self.assertIsNone(can_transition(EscrowStatus.PENDING_RECEIPT, role, EscrowAction.CONFIRM_DELIVERY))

    def test_wrong_role_rejected(self):
        self.assertIsNone(can_transition(EscrowStatus.PENDING_RECEIPT, ActorRole.BUYER, EscrowAction.VERIFY_FUNDS))
        self.assertIsNone(can_transition(EscrowStatus.FUNDS_HELD, ActorRole.BUYER, EscrowAction.MARK_SHIPPED))
        self.assertIsNone(can_transition(EscrowStatus.DISPUTED, ActorRole.ADMIN, EscrowAction.OPEN_DISPUTE))

    def test_terminal_states_reject_everything(self):
        for terminal in (EscrowStatus.RELEASED_TO_SELLER, EscrowStatus.REFUNDED_TO_BUYER):
            snapshot = _snapshot(terminal, OrderStatus.DELIVERED, receipt=True, proof=True)
            for role in ActorRole:
                self.assertEqual(allowed_actions(snapshot, role), [])
                for action in EscrowAction:
                    self.assertIsNone(can_transition(terminal, role, action))
                    with self.assertRaises(GuardViolation) as ctx:
                        decide(snapshot, role, action, evidence="https://x.test/a.jpg")
                    self.assertEqual(ctx.exception.current_state, terminal.value)
                    self.assertEqual(ctx.exception.action, action.value)

    def test_verify_funds_requires_receipt(self):
        with self.assertRaises(GuardViolation) as ctx:
            decide(_snapshot(EscrowStatus.PENDING_RECEIPT), ActorRole.ADMIN, EscrowAction.VERIFY_FUNDS)
        self.assertIn("receipt", ctx.exception.message)

        decision = decide(
            _snapshot(EscrowStatus.PENDING_RECEIPT, receipt=True),
            ActorRole.ADMIN,
            EscrowAction.VERIFY_FUNDS,
        )
        self.assertEqual(decision.to_state, EscrowStatus.FUNDS_HELD)
        self.assertIsNone(decision.status_after)

    def test_receipt_set_at_most_once(self):
        with self.assertRaises(GuardViolation):
            decide(
                _snapshot(EscrowStatus.PENDING_RECEIPT, receipt=True),
                ActorRole.BUYER,
                EscrowAction.SUBMIT_RECEIPT,
                evidence="https://x.test/r2.jpg",
            )

    def test_mark_shipped_requires_proof(self):
        held = _snapshot(EscrowStatus.FUNDS_HELD, receipt=True)
        with self.assertRaises(GuardViolation) as ctx:
            decide(held, ActorRole.SELLER, EscrowAction.MARK_SHIPPED, evidence="   ")
        self.assertIn("proof", ctx.exception.message)
        decision = decide(held, ActorRole.SELLER, EscrowAction.MARK_SHIPPED, evidence="https://x.test/p.jpg")
        self.assertEqual(decision.status_after, OrderStatus.SHIPPED)
        self.assertEqual(decision.to_state, EscrowStatus.FUNDS_HELD)

    def test_confirm_delivery_needs_shipment(self):
        held = _snapshot(EscrowStatus.FUNDS_HELD, receipt=True)
        with self.assertRaises(GuardViolation):
            decide(held, ActorRole.BUYER, EscrowAction.CONFIRM_DELIVERY)
        shipped = _snapshot(EscrowStatus.FUNDS_HELD, OrderStatus.SHIPPED, receipt=True)
        decision = decide(shipped, ActorRole.BUYER, EscrowAction.CONFIRM_DELIVERY)
        self.assertEqual(decision.status_after, OrderStatus.DELIVERED)
        with_proof = _snapshot(EscrowStatus.FUNDS_HELD, OrderStatus.PROCESSING, receipt=True, proof=True)
        self.assertEqual(
            decide(with_proof, ActorRole.BUYER, EscrowAction.CONFIRM_DELIVERY).to_state,
            EscrowStatus.RELEASED_TO_SELLER,
        )

    def test_early_confirmation_names_pending_receipt(self):
        with self.assertRaises(GuardViolation) as ctx:
            decide(_snapshot(EscrowStatus.PENDING_RECEIPT), ActorRole.BUYER, EscrowAction.CONFIRM_DELIVERY)
        self.assertEqual(ctx.exception.current_state, "pending_receipt")
        self.assertIn("pending_receipt", ctx.exception.message)
        self.assertIn("confirm_delivery", ctx.exception.message)

    def test_dispute_resolution_flag(self):
        disputed = _snapshot(EscrowStatus.DISPUTED, OrderStatus.DISPUTED, receipt=True)
        refund = decide(disputed, ActorRole.ADMIN, EscrowAction.REFUND_BUYER)
        self.assertTrue(refund.resolves_dispute)
        self.assertEqual(refund.status_after, OrderStatus.REFUNDED)
        held = _snapshot(EscrowStatus.FUNDS_HELD, receipt=True)
        self.assertFalse(decide(held, ActorRole.ADMIN, EscrowAction.RELEASE_TO_SELLER).resolves_dispute)

    def test_snapshot_from_raw_row(self):
        snapshot = EscrowSnapshot.from_values(
            {"escrow_status": "FUNDS_HELD", "status": "canceled", "buyer_receipt_url": "https://x.test/r.jpg"}
        )
        self.assertEqual(snapshot.escrow_status, EscrowStatus.FUNDS_HELD)
        self.assertEqual(snapshot.status, OrderStatus.CANCELLED)
        self.assertTrue(snapshot.has_receipt)
        self.assertFalse(snapshot.has_shipping_proof)

    def test_allowed_actions_for_pending_order(self):
        pending = _snapshot(EscrowStatus.PENDING_RECEIPT)
        self.assertEqual(allowed_actions(pending, ActorRole.BUYER), ["submit_receipt", "open_dispute"])
        self.assertEqual(allowed_actions(pending, ActorRole.ADMIN), [])

    def test_parse_action(self):
        self.assertEqual(parse_action(" Verify_Funds "), EscrowAction.VERIFY_FUNDS)
        with self.assertRaises(ValidationError):
            parse_action("teleport")


if __name__ == "__main__":
    unittest.main()
