from __future__ import annotations

import os
import unittest
from unittest import mock

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from escrow_fixtures import DELIVERY, PROOF_URL, RECEIPT_URL, EscrowAppTestCase

from bazaar.extensions import db
from bazaar.models import Dispute, DisputeStatus, EscrowStatus, EscrowTransition, OrderStatus, PlatformEvent
from bazaar.services.admin_escrow_service import AdminEscrowService
from bazaar.services.buyer_actions import BuyerActionService
from bazaar.services.checkout_service import CheckoutService
from bazaar.services.order_store import is_missing_schema_error
from bazaar.services.seller_actions import SellerActionService
from bazaar.services.transition_strategies import (
    ATOMIC_MIGRATION_REVISION,
    check_atomic_capability,
    reset_capability_cache,
)


class EscrowDegradedModeTestCase(EscrowAppTestCase):
    def _order_with_receipt(self) -> str:
        order_id = self.place_order()["id"]
        self.assertTrue(BuyerActionService(self.buyer).submit_receipt(order_id, RECEIPT_URL).ok)
        return order_id

    def _drop_ledger(self):
        db.session.commit()
        EscrowTransition.__table__.drop(db.engine)
        reset_capability_cache()

    def test_reports_atomic_on_full_schema(self):
        report = check_atomic_capability(refresh=True)
        self.assertTrue(report.atomic)
        self.assertEqual(report.to_dict()["mode"], "atomic")
        self.assertIsNone(report.to_dict()["migration_required"])

    def test_detects_missing_ledger(self):
        self._drop_ledger()
        report = check_atomic_capability()
        self.assertFalse(report.atomic)
        self.assertIn("escrow_transitions", report.missing)
        self.assertEqual(report.to_dict()["migration_required"], ATOMIC_MIGRATION_REVISION)

    def test_verify_funds_falls_back_when_ledger_missing(self):
        order_id = self._order_with_receipt()
        self._drop_ledger()

        with self.assertLogs("bazaar", level="WARNING") as logs:
            result = AdminEscrowService(self.admin).verify_funds(order_id)

        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.order["escrow_status"], "funds_held")
        self.assertEqual(result.order["status"], "pending")
        self.assertTrue(any("escrow_transition_degraded" in line for line in logs.output))

        order = self.reload(order_id)
        self.assertEqual(order.escrow_status, EscrowStatus.FUNDS_HELD)
        event = PlatformEvent.query.filter_by(event_type="escrow_transition_degraded", subject_id=order_id).one()
        self.assertEqual(event.severity, "WARNING")
        self.assertEqual(event.metadata_dict()["to"], "funds_held")

    def test_fallback_result_matches_atomic_shape(self):
        atomic_id = self._order_with_receipt()
        degraded_id = self._order_with_receipt()

        atomic = AdminEscrowService(self.admin).verify_funds(atomic_id)
        self._drop_ledger()
        degraded = AdminEscrowService(self.admin).verify_funds(degraded_id)

        self.assertTrue(atomic.ok and degraded.ok)
        self.assertEqual(set(atomic.to_dict()), set(degraded.to_dict()))
        self.assertEqual(set(atomic.order), set(degraded.order))
        self.assertEqual(atomic.order["escrow_status"], degraded.order["escrow_status"])

    def test_fallback_still_rejects_illegal_transition(self):
        order_id = self.place_order()["id"]
        self._drop_ledger()
        result = AdminEscrowService(self.admin).verify_funds(order_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "guard_violation")
        self.assertEqual(result.current_state, "pending_receipt")

    def test_fallback_refund_resolves_open_dispute(self):
        order_id = self._order_with_receipt()
        self.assertTrue(AdminEscrowService(self.admin).verify_funds(order_id).ok)
        self.assertTrue(BuyerActionService(self.buyer).open_dispute(order_id, "item damaged").ok)
        self._drop_ledger()

        result = AdminEscrowService(self.admin).refund_buyer(order_id, "refund approved")

        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.order["escrow_status"], "refunded_to_buyer")
        self.assertEqual(result.order["status"], "refunded")
        self.assertEqual(result.order["dispute"]["status"], "resolved")
        self.assertEqual(result.order["dispute"]["resolution_note"], "refund approved")
        dispute = Dispute.query.filter_by(order_id=order_id).one()
        self.assertEqual(dispute.status, DisputeStatus.RESOLVED)
        self.assertEqual(self.reload(order_id).status, OrderStatus.REFUNDED)

    def test_participant_actions_require_migration(self):
        order_id = self._order_with_receipt()
        self._drop_ledger()

        confirm = BuyerActionService(self.buyer).confirm_delivery(order_id)
        self.assertFalse(confirm.ok)
        self.assertEqual(confirm.error, "capability_missing")
        self.assertEqual(confirm.http_status, 503)
        self.assertIn(ATOMIC_MIGRATION_REVISION, confirm.message)

        ship = SellerActionService(self.seller).mark_shipped(order_id, PROOF_URL)
        self.assertEqual(ship.error, "capability_missing")

    def test_forced_degraded_mode(self):
        order_id = self._order_with_receipt()
        with mock.patch.dict(os.environ, {"ESCROW_FORCE_DEGRADED": "1"}):
            reset_capability_cache()
            report = check_atomic_capability()
            self.assertFalse(report.atomic)
            self.assertTrue(report.forced_degraded)
            self.assertEqual(report.missing, ())
            with self.assertLogs("bazaar", level="WARNING") as logs:
                result = AdminEscrowService(self.admin).verify_funds(order_id)
        self.assertTrue(result.ok, result.message)
        self.assertTrue(any("cause=forced" in line for line in logs.output))
        # Degraded writes still bump the version when the column exists.
        self.assertEqual(self.reload(order_id).version, 3)
        self.assertEqual(EscrowTransition.query.filter_by(order_id=order_id, action="verify_funds").count(), 0)

    def test_atomic_attempt_falls_back_when_ledger_vanishes(self):
        order_id = self._order_with_receipt()
        self.assertTrue(check_atomic_capability(refresh=True).atomic)
        db.session.commit()
        # The cached report still says atomic when the ledger table disappears.
        EscrowTransition.__table__.drop(db.engine)

        with self.assertLogs("bazaar", level="WARNING") as logs:
            result = AdminEscrowService(self.admin).verify_funds(order_id)

        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.order["escrow_status"], "funds_held")
        self.assertTrue(any("escrow_atomic_unavailable" in line for line in logs.output))
        self.assertTrue(any("cause=missing_schema_error" in line for line in logs.output))
        self.assertEqual(self.reload(order_id).escrow_status, EscrowStatus.FUNDS_HELD)
        self.assertFalse(check_atomic_capability().atomic)

    def test_missing_schema_error_detection(self):
        missing = OperationalError("SELECT 1", {}, Exception("no such table: escrow_transitions"))
        self.assertTrue(is_missing_schema_error(missing))
        pg_missing = OperationalError("SELECT 1", {}, Exception('relation "escrow_transitions" does not exist'))
        self.assertTrue(is_missing_schema_error(pg_missing))
        other = OperationalError("SELECT 1", {}, Exception("database is locked"))
        self.assertFalse(is_missing_schema_error(other))


class MidMigrationSchemaTestCase(EscrowAppTestCase):
    """Schema from before the escrow-atomic revision: no ledger, no orders.version."""

    def setUp(self):
        super().setUp()
        self.order_id = self.place_order()["id"]
        self.assertTrue(BuyerActionService(self.buyer).submit_receipt(self.order_id, RECEIPT_URL).ok)
        db.session.commit()
        EscrowTransition.__table__.drop(db.engine)
        db.session.execute(text("ALTER TABLE orders DROP COLUMN version"))
        db.session.commit()
        db.session.expire_all()
        reset_capability_cache()

    def _order_count(self) -> int:
        return int(db.session.execute(text("SELECT COUNT(*) FROM orders")).scalar())

    def test_capability_reports_missing_version(self):
        report = check_atomic_capability()
        self.assertFalse(report.atomic)
        self.assertIn("orders.version", report.missing)
        self.assertIn("escrow_transitions", report.missing)

    def test_admin_ruling_still_runs(self):
        with self.assertLogs("bazaar", level="WARNING"):
            result = AdminEscrowService(self.admin).verify_funds(self.order_id)
        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.order["escrow_status"], "funds_held")
        row = db.session.execute(
            text("SELECT escrow_status FROM orders WHERE id = :id"), {"id": self.order_id}
        ).scalar()
        self.assertEqual(row, "funds_held")

    def test_checkout_reports_migration_required(self):
        before = self._order_count()
        with self.assertLogs("bazaar", level="WARNING") as logs:
            result = CheckoutService(self.buyer).place([{"item_id": self.rug_id}], DELIVERY)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "capability_missing")
        self.assertEqual(result.http_status, 503)
        self.assertIn(ATOMIC_MIGRATION_REVISION, result.message)
        self.assertTrue(any("checkout_schema_missing" in line for line in logs.output))
        self.assertEqual(self._order_count(), before)

    def test_order_reads_report_migration_required(self):
        cases = (
            (f"/api/orders/{self.order_id}", self.buyer),
            ("/api/orders/my", self.buyer),
            ("/api/seller/orders", self.seller),
        )
        for path, actor in cases:
            with self.subTest(path=path):
                res = self.client.get(path, headers=self.auth(actor))
                self.assertEqual(res.status_code, 503)
                body = res.get_json()
                self.assertFalse(body["ok"])
                self.assertEqual(body["error"], "capability_missing")
                self.assertIn(ATOMIC_MIGRATION_REVISION, body["message"])

        res = self.client.post("/api/orders", json=dict(DELIVERY, item_id=self.rug_id), headers=self.auth(self.buyer))
        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.get_json()["error"], "capability_missing")


if __name__ == "__main__":
    unittest.main()
