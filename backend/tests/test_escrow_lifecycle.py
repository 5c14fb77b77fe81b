from __future__ import annotations

import unittest

from escrow_fixtures import PROOF_URL, RECEIPT_URL, EscrowAppTestCase

from bazaar.models import Dispute, DisputeStatus, EscrowStatus, EscrowTransition, OrderStatus, PlatformEvent
from bazaar.services.admin_escrow_service import AdminEscrowService
from bazaar.services.buyer_actions import BuyerActionService
from bazaar.services.order_queries import order_timeline
from bazaar.services.seller_actions import SellerActionService


class EscrowLifecycleTestCase(EscrowAppTestCase):
    def _held_order(self) -> str:
        order_id = self.place_order()["id"]
        self.assertTrue(BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL).ok)
        self.assertTrue(AdminEscrowService(self.admin).verify_funds(order_id).ok)
        return order_id

    def test_happy_path(self):
        created = self.place_order()
        self.assertEqual(created["status"], "pending")
        self.assertEqual(created["escrow_status"], "pending_receipt")
        self.assertEqual(created["total_price_dzd"], 1250)
        order_id = created["id"]

        receipt = BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL)
        self.assertTrue(receipt.ok, receipt.message)
        self.assertEqual(receipt.order["escrow_status"], "pending_receipt")
        self.assertEqual(receipt.order["buyer_receipt_url"], RECEIPT_URL)

        verified = AdminEscrowService(self.admin).verify_funds(order_id)
        self.assertTrue(verified.ok, verified.message)
        self.assertEqual(verified.order["escrow_status"], "funds_held")

        shipped = SellerActionService(self.seller).mark_shipped(order_id, PROOF_URL)
        self.assertTrue(shipped.ok, shipped.message)
        self.assertEqual(shipped.order["status"], "shipped")
        self.assertEqual(shipped.order["escrow_status"], "funds_held")
        self.assertEqual(shipped.order["seller_shipping_proof"], PROOF_URL)

        confirmed = BuyerActionService(self.buyer).confirm_delivery(order_id)
        self.assertTrue(confirmed.ok, confirmed.message)
        self.assertEqual(confirmed.order["escrow_status"], "released_to_seller")
        self.assertEqual(confirmed.order["status"], "delivered")
        self.assertTrue(confirmed.order["buyer_confirmation"])

        order = self.reload(order_id)
        self.assertEqual(order.version, 5)
        actions = [row.action for row in EscrowTransition.query.filter_by(order_id=order_id).order_by(EscrowTransition.id)]
        self.assertEqual(actions, ["submit_receipt", "verify_funds", "mark_shipped", "confirm_delivery"])

        timeline = order_timeline(order)
        self.assertEqual(timeline[0]["action"], "order_created")
        self.assertEqual(
            [entry["to_status"] for entry in timeline],
            ["pending_receipt", "pending_receipt", "funds_held", "funds_held", "released_to_seller"],
        )

    def test_dispute_then_refund(self):
        order_id = self._held_order()

        disputed = BuyerActionService(self.buyer).open_dispute(order_id, "item damaged")
        self.assertTrue(disputed.ok, disputed.message)
        self.assertEqual(disputed.order["escrow_status"], "disputed")
        self.assertEqual(disputed.order["status"], "disputed")
        self.assertEqual(disputed.order["dispute"]["reason"], "item damaged")
        self.assertEqual(disputed.order["dispute"]["status"], "open")

        refunded = AdminEscrowService(self.admin).refund_buyer(order_id, "refund approved")
        self.assertTrue(refunded.ok, refunded.message)
        self.assertEqual(refunded.order["escrow_status"], "refunded_to_buyer")
        self.assertEqual(refunded.order["status"], "refunded")
        self.assertEqual(refunded.order["dispute"]["status"], "resolved")
        self.assertEqual(refunded.order["dispute"]["resolution_action"], "refund_buyer")
        self.assertEqual(refunded.order["dispute"]["resolution_note"], "refund approved")

        late = BuyerActionService(self.buyer).confirm_delivery(order_id)
        self.assertFalse(late.ok)
        self.assertEqual(late.error, "guard_violation")
        self.assertEqual(late.current_state, "refunded_to_buyer")

        dispute = Dispute.query.filter_by(order_id=order_id).one()
        self.assertEqual(dispute.status, DisputeStatus.RESOLVED)
        self.assertEqual(dispute.resolved_by_user_id, self.admin.user_id)
        opened = PlatformEvent.query.filter_by(event_type="dispute_opened", subject_id=order_id).one()
        self.assertEqual(opened.metadata_dict(), {"role": "buyer", "from": "funds_held"})

    def test_seller_dispute_then_release(self):
        order_id = self.place_order()["id"]
        disputed = SellerActionService(self.seller).open_dispute(order_id, "buyer unreachable")
        self.assertTrue(disputed.ok, disputed.message)
        self.assertEqual(disputed.order["dispute"]["opened_by_role"], "seller")

        released = AdminEscrowService(self.admin).release_to_seller(order_id, "seller proved dispatch")
        self.assertTrue(released.ok, released.message)
        self.assertEqual(released.order["escrow_status"], "released_to_seller")
        self.assertEqual(released.order["status"], "delivered")
        self.assertFalse(released.order["buyer_confirmation"])

    def test_early_confirmation_rejected(self):
        order_id = self.place_order()["id"]
        result = BuyerActionService(self.buyer).confirm_delivery(order_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "guard_violation")
        self.assertEqual(result.current_state, "pending_receipt")
        self.assertEqual(result.action, "confirm_delivery")
        self.assertIn("pending_receipt", result.message)
        self.assertEqual(result.http_status, 409)
        self.assertEqual(self.reload(order_id).escrow_status, EscrowStatus.PENDING_RECEIPT)

    def test_verify_without_receipt_rejected(self):
        order_id = self.place_order()["id"]
        result = AdminEscrowService(self.admin).verify_funds(order_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "guard_violation")
        self.assertIn("receipt", result.message)

    def test_receipt_only_once(self):
        order_id = self.place_order()["id"]
        self.assertTrue(BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL).ok)
        second = BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL + "?v=2")
        self.assertFalse(second.ok)
        self.assertEqual(second.error, "guard_violation")
        self.assertEqual(self.reload(order_id).buyer_receipt_url, RECEIPT_URL)

    def test_shipping_without_proof_rejected(self):
        order_id = self._held_order()
        result = SellerActionService(self.seller).mark_shipped(order_id, "")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "guard_violation")
        self.assertEqual(result.current_state, "funds_held")
        self.assertIsNone(self.reload(order_id).seller_shipping_proof)

    def test_invalid_blob_reference_rejected(self):
        order_id = self.place_order()["id"]
        result = BuyerActionService(self.buyer).submit_receipt(order_id, "file:///etc/passwd")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "validation_error")
        self.assertIsNone(self.reload(order_id).buyer_receipt_url)

    def test_dispute_requires_reason(self):
        order_id = self.place_order()["id"]
        result = BuyerActionService(self.buyer).open_dispute(order_id, "   ")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "validation_error")

    def test_terminal_order_is_frozen(self):
        order_id = self._held_order()
        self.assertTrue(AdminEscrowService(self.admin).release_to_seller(order_id).ok)
        before = self.reload(order_id)
        version = before.version

        attempts = [
            BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL),
            BuyerActionService(self.buyer).confirm_delivery(order_id),
            BuyerActionService(self.buyer).open_dispute(order_id, "changed my mind"),
            SellerActionService(self.seller).mark_shipped(order_id, PROOF_URL),
            SellerActionService(self.seller).open_dispute(order_id, "late"),
            AdminEscrowService(self.admin).verify_funds(order_id),
            AdminEscrowService(self.admin).release_to_seller(order_id),
            AdminEscrowService(self.admin).refund_buyer(order_id),
        ]
        for result in attempts:
            with self.subTest(action=result.action):
                self.assertFalse(result.ok)
                self.assertEqual(result.error, "guard_violation")
                self.assertEqual(result.current_state, "released_to_seller")

        after = self.reload(order_id)
        self.assertEqual(after.version, version)
        self.assertEqual(after.escrow_status, EscrowStatus.RELEASED_TO_SELLER)
        self.assertEqual(after.status, OrderStatus.DELIVERED)

    def test_unknown_order(self):
        result = AdminEscrowService(self.admin).verify_funds("0" * 32)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "not_found")
        self.assertEqual(result.http_status, 404)

    def test_escrow_events_recorded(self):
        order_id = self._held_order()
        types = [e.event_type for e in PlatformEvent.query.filter_by(subject_id=order_id).order_by(PlatformEvent.id)]
        self.assertEqual(types, ["order_created", "escrow_transition_applied", "escrow_transition_applied"])


if __name__ == "__main__":
    unittest.main()
