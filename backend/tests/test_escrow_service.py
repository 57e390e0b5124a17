from __future__ import annotations

import os
import unittest
from unittest import mock

from app.extensions import db
from app.integrations.payments.mock_provider import MockIntaSendProvider
from app.models import EscrowTransition, Payout, PlatformEvent, VendorBalance
from app.services.escrow_service import EscrowTransitionError, get_escrow, transition_escrow
from app.services.payout_service import process_auto_payout, transfer_to_vendor_wallet
from marketplace_fixtures import MarketplaceTestCase


class EscrowTransitionTestCase(MarketplaceTestCase):
    def test_moves_are_audited_once_per_key(self):
        ctx = self.paid_order()
        order_id = ctx["order"]["id"]
        with self.app.app_context():
            escrow = get_escrow(order_id)
            self.assertEqual(escrow.status, "held")
            before = EscrowTransition.query.filter_by(escrow_id=escrow.id).count()

            first = transition_escrow(escrow, "withheld", idempotency_key="case:1:withhold", actor={"type": "user", "id": ctx["buyer"]["id"]})
            db.session.commit()
            self.assertEqual((first.from_status, first.to_status), ("held", "withheld"))
            self.assertEqual(first.actor_id, ctx["buyer"]["id"])

            replay = transition_escrow(escrow, "released", idempotency_key="case:1:withhold")
            self.assertEqual(replay.id, first.id)
            self.assertEqual(get_escrow(order_id).status, "withheld")

            released = transition_escrow(escrow, "released", idempotency_key="case:1:release")
            db.session.commit()
            self.assertEqual((released.from_status, released.to_status), ("withheld", "released"))
            self.assertIsNotNone(get_escrow(order_id).released_at)
            self.assertEqual(EscrowTransition.query.filter_by(escrow_id=escrow.id).count(), before + 2)

    def test_invalid_move_is_rejected(self):
        ctx = self.paid_order()
        with self.app.app_context():
            escrow = get_escrow(ctx["order"]["id"])
            transition_escrow(escrow, "released", idempotency_key="case:2:release")
            db.session.commit()
            with self.assertRaises(EscrowTransitionError) as err:
                transition_escrow(escrow, "withheld", idempotency_key="case:2:withhold")
            self.assertEqual((err.exception.current, err.exception.target), ("released", "withheld"))
            db.session.rollback()
            self.assertIsNone(transition_escrow(escrow, "released", idempotency_key="case:2:noop"))
            with self.assertRaises(ValueError):
                transition_escrow(escrow, "released", idempotency_key="  ")


class AutoPayoutFailureTestCase(MarketplaceTestCase):
    def test_provider_failure_records_failed_payout(self):
        ctx = self.shipped_order(price=2500)
        self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "confirm")
        vendor_id = ctx["vendor"]["id"]
        with self.app.app_context():
            with mock.patch.dict(os.environ, {"MOCK_PAYMENTS_FORCE_FAIL": "1"}):
                result = process_auto_payout(vendor_id)
            self.assertEqual(result["status"], "failed")
            self.assertIn("INTASEND_SEND_MONEY_FAILED", result["reason"])

            sweeps = Payout.query.filter_by(vendor_id=vendor_id, order_id=None).all()
            self.assertEqual([p.status for p in sweeps], ["failed"])
            self.assertTrue(sweeps[0].failure_reason)
            balance = VendorBalance.query.filter_by(vendor_id=vendor_id).one()
            self.assertEqual(balance.pending_balance, 2250.0)
            self.assertEqual(balance.total_paid_out, 0.0)
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().status, "pending")


class WalletTransferTestCase(MarketplaceTestCase):
    def _completed(self) -> dict:
        ctx = self.shipped_order(price=3000)
        self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "confirm")
        return ctx

    def test_transfer_runs_once_per_order(self):
        ctx = self._completed()
        order_id = ctx["order"]["id"]
        with self.app.app_context():
            with mock.patch.object(MockIntaSendProvider, "intra_transfer", autospec=True, side_effect=MockIntaSendProvider.intra_transfer) as spy:
                first = transfer_to_vendor_wallet(order_id)
                second = transfer_to_vendor_wallet(order_id)
            self.assertEqual(spy.call_count, 1)
            self.assertEqual(first["amount"], 2700.0)
            self.assertTrue(first["reference"].startswith("tr_"))
            self.assertTrue(second["already_transferred"])
            self.assertEqual(second["reference"], first["reference"])

            event = PlatformEvent.query.filter_by(idempotency_key=f"wallet_transfer:{order_id}").one()
            self.assertEqual(event.metadata_dict()["status"], "sent")

    def test_failed_transfer_can_be_retried(self):
        ctx = self._completed()
        order_id = ctx["order"]["id"]
        with self.app.app_context():
            with mock.patch.dict(os.environ, {"MOCK_PAYMENTS_FORCE_FAIL": "1"}):
                with self.assertRaises(RuntimeError):
                    transfer_to_vendor_wallet(order_id)
            self.assertEqual(PlatformEvent.query.filter_by(idempotency_key=f"wallet_transfer:{order_id}").count(), 0)

            result = transfer_to_vendor_wallet(order_id)
            self.assertNotIn("already_transferred", result)
            self.assertTrue(result["reference"].startswith("tr_"))


if __name__ == "__main__":
    unittest.main()
