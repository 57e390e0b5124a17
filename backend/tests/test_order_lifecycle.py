from __future__ import annotations

import unittest

from app.extensions import db
from app.models import CommissionLedger, EscrowTransaction, Order, Payout, Product, VendorBalance, VendorRating
from marketplace_fixtures import MarketplaceTestCase


class OrderCreationTestCase(MarketplaceTestCase):
    def test_order_snapshot_totals_and_held_escrow(self):
        ctx = self.marketplace(price=2500)
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"], quantity=2, shipping_fee=300)

        self.assertEqual(order["status"], "pending_payment")
        self.assertEqual(order["subtotal_ksh"], 5000.0)
        self.assertEqual(order["shipping_fee_ksh"], 300.0)
        self.assertEqual(order["total_ksh"], 5300.0)
        # Commission is charged on product value only.
        self.assertEqual(order["commission_amount"], 500.0)
        self.assertEqual(order["payout_amount"], 4800.0)
        self.assertEqual(order["items"][0]["product_snapshot"]["name"], "Air Runner")
        self.assertEqual(order["shipping"]["recipient_name"], "Wanjiru Kamau")

        with self.app.app_context():
            escrow = EscrowTransaction.query.filter_by(order_id=order["id"]).one()
            self.assertEqual(escrow.status, "held")
            self.assertEqual(escrow.held_amount, 5300.0)
            self.assertEqual(escrow.release_amount, 4800.0)

    def test_pickup_orders_never_carry_a_shipping_fee(self):
        ctx = self.marketplace(price=1200)
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"], delivery_type="pickup", shipping_fee=450)
        self.assertEqual(order["shipping_fee_ksh"], 0.0)
        self.assertEqual(order["total_ksh"], 1200.0)
        self.assertEqual(order["shipping"]["delivery_type"], "pickup")

    def test_rejects_multi_vendor_cart(self):
        ctx = self.marketplace()
        other = self.register_vendor()
        other_product = self.create_product(other["token"])
        res = self.client.post(
            "/api/orders",
            json={
                "items": [{"product_id": ctx["product"]["id"]}, {"product_id": other_product["id"]}],
                "shipping": {"recipient_name": "A", "phone": "0722000111", "address_line1": "Street"},
            },
            headers=self.auth(ctx["buyer"]["token"]),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "MULTI_VENDOR_CART")

    def test_rejects_insufficient_stock(self):
        ctx = self.marketplace(stock=1)
        res = self.place_order(ctx["buyer"]["token"], ctx["product"]["id"], quantity=2)
        self.assertEqual(res.status_code, 409)
        body = res.get_json()
        self.assertEqual(body["error"], "INSUFFICIENT_STOCK")
        self.assertEqual(body["available"], 1)

    def test_validation_errors(self):
        ctx = self.marketplace()
        headers = self.auth(ctx["buyer"]["token"])
        res = self.client.post("/api/orders", json={"items": []}, headers=headers)
        self.assertEqual(res.get_json()["error"], "EMPTY_CART")
        res = self.place_order(ctx["buyer"]["token"], ctx["product"]["id"], gateway="bitcoin")
        self.assertEqual(res.get_json()["error"], "INVALID_GATEWAY")
        res = self.client.post(
            "/api/orders",
            json={"items": [{"product_id": ctx["product"]["id"]}], "shipping": {"recipient_name": "A", "phone": "0722000111"}},
            headers=headers,
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "SHIPPING_DETAILS_REQUIRED")
        self.assertEqual(self.place_order(ctx["buyer"]["token"], 987654).status_code, 404)

    def test_idempotency_key_replays_and_conflicts(self):
        ctx = self.marketplace()
        key = {"Idempotency-Key": "checkout-abc-123"}
        first = self.place_order(ctx["buyer"]["token"], ctx["product"]["id"], headers=key)
        second = self.place_order(ctx["buyer"]["token"], ctx["product"]["id"], headers=key)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.get_json()["order"]["id"], second.get_json()["order"]["id"])

        changed = self.place_order(ctx["buyer"]["token"], ctx["product"]["id"], quantity=2, headers=key)
        self.assertEqual(changed.status_code, 409)
        self.assertEqual(changed.get_json()["error"], "IDEMPOTENCY_KEY_REUSE")
        with self.app.app_context():
            self.assertEqual(Order.query.filter_by(customer_id=ctx["buyer"]["id"]).count(), 1)


class OrderWorkflowTestCase(MarketplaceTestCase):
    def test_payment_moves_order_to_vendor_confirmation(self):
        ctx = self.paid_order()
        res = self.client.get(f"/api/orders/{ctx['order']['id']}", headers=self.auth(ctx["buyer"]["token"]))
        self.assertEqual(res.get_json()["order"]["status"], "pending_vendor_confirmation")

        vendor_list = self.client.get("/api/vendor/orders", headers=self.auth(ctx["vendor"]["token"])).get_json()["items"]
        self.assertEqual([o["id"] for o in vendor_list], [ctx["order"]["id"]])
        self.assertNotIn("delivery_otp", vendor_list[0])

    def test_strangers_cannot_view_or_act(self):
        ctx = self.paid_order()
        stranger = self.register("buyer")
        other_vendor = self.register_vendor()
        order_id = ctx["order"]["id"]
        self.assertEqual(self.client.get(f"/api/orders/{order_id}", headers=self.auth(stranger["token"])).status_code, 403)
        self.assertEqual(self.order_action(other_vendor["token"], order_id, "accept").status_code, 403)
        self.assertEqual(self.order_action(ctx["vendor"]["token"], order_id, "cancel").status_code, 403)
        self.assertEqual(self.client.get("/api/orders/999999", headers=self.auth(stranger["token"])).status_code, 404)

    def test_full_delivery_flow_with_buyer_confirmation(self):
        ctx = self.shipped_order(price=2500, stock=5)
        order_id = ctx["order"]["id"]
        vendor_token = ctx["vendor"]["token"]
        buyer_token = ctx["buyer"]["token"]

        shipped = self.client.get(f"/api/orders/{order_id}", headers=self.auth(buyer_token)).get_json()["order"]
        self.assertEqual(shipped["status"], "shipped")
        self.assertEqual(shipped["shipping"]["courier_name"], "G4S")
        self.assertTrue(shipped["vendor_confirmed"])
        self.assertIsNotNone(shipped["auto_release_at"])

        res = self.order_action(vendor_token, order_id, "arrived")
        self.assertEqual(res.get_json()["order"]["status"], "arrived")

        res = self.order_action(buyer_token, order_id, "confirm", {"rating": 7})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_RATING")

        res = self.order_action(buyer_token, order_id, "confirm", {"rating": 5, "review": "Perfect fit"})
        self.assertEqual(res.status_code, 200)
        done = res.get_json()["order"]
        self.assertEqual(done["status"], "completed")
        self.assertTrue(done["buyer_confirmed"])

        res = self.order_action(buyer_token, order_id, "confirm")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "ORDER_ALREADY_COMPLETED")

        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=order_id).one().status, "released")
            payout = Payout.query.filter_by(order_id=order_id).one()
            self.assertEqual(payout.amount_ksh, 2250.0)
            self.assertEqual(payout.status, "pending")
            self.assertEqual(CommissionLedger.query.filter_by(order_id=order_id).one().commission_amount, 250.0)
            balance = VendorBalance.query.filter_by(vendor_id=ctx["vendor"]["id"]).one()
            self.assertEqual(balance.pending_balance, 2250.0)
            self.assertEqual(balance.total_earned, 2250.0)
            self.assertEqual(db.session.get(Product, ctx["product"]["id"]).stock, 4)
            self.assertEqual(VendorRating.query.filter_by(order_id=order_id).one().rating, 5)

    def test_ship_requires_courier_and_acceptance(self):
        ctx = self.paid_order()
        order_id = ctx["order"]["id"]
        res = self.order_action(ctx["vendor"]["token"], order_id, "ship", {"courier_name": "G4S", "tracking_number": "T1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "INVALID_STATUS_TRANSITION")

        self.order_action(ctx["vendor"]["token"], order_id, "accept")
        res = self.order_action(ctx["vendor"]["token"], order_id, "ship", {"courier_name": "G4S"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "SHIPPING_DETAILS_REQUIRED")

    def test_unpaid_order_cannot_be_accepted_into_shipping(self):
        ctx = self.marketplace()
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"])
        res = self.order_action(ctx["vendor"]["token"], order["id"], "accept")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["current_status"], "pending_payment")

    def test_shipping_fee_must_be_paid_before_shipping(self):
        ctx = self.accepted_order(price=2000)
        order_id = ctx["order"]["id"]
        vendor_token = ctx["vendor"]["token"]
        buyer_token = ctx["buyer"]["token"]

        res = self.order_action(vendor_token, order_id, "shipping-fee", {"shipping_fee_ksh": 350})
        self.assertEqual(res.status_code, 200)
        order = res.get_json()["order"]
        self.assertEqual(order["total_ksh"], 2350.0)
        self.assertEqual(order["commission_amount"], 200.0)
        self.assertEqual(order["payout_amount"], 2150.0)

        res = self.order_action(vendor_token, order_id, "ship", {"courier_name": "G4S", "tracking_number": "T2"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "PAYMENT_INCOMPLETE")
        self.assertEqual(res.get_json()["remaining_ksh"], 350.0)

        fee = self.client.post(
            "/api/payments/delivery-fee",
            json={"order_id": order_id, "amount": 350, "gateway": "mpesa", "phone": "0722000111"},
            headers=self.auth(buyer_token),
        )
        self.assertEqual(fee.status_code, 201, fee.get_data(as_text=True))
        self.assertTrue(fee.get_json()["payment"]["metadata"]["is_delivery_fee"])

        res = self.order_action(vendor_token, order_id, "ship", {"courier_name": "G4S", "tracking_number": "T2"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "DELIVERY_FEE_PENDING")

        self.client.post("/api/webhooks/mpesa", json=self.mpesa_callback(fee.get_json()["checkout_request_id"], receipt="QKFEE0001"))
        res = self.order_action(vendor_token, order_id, "ship", {"courier_name": "G4S", "tracking_number": "T2"})
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))

        with self.app.app_context():
            escrow = EscrowTransaction.query.filter_by(order_id=order_id).one()
            self.assertEqual(escrow.held_amount, 2350.0)
            self.assertEqual(escrow.release_amount, 2150.0)

    def test_pickup_ready_only_for_pickup_orders(self):
        ctx = self.accepted_order()
        res = self.order_action(ctx["vendor"]["token"], ctx["order"]["id"], "pickup-ready")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "NOT_PICKUP_ORDER")

        pickup = self.accepted_order(delivery_type="pickup")
        res = self.order_action(pickup["vendor"]["token"], pickup["order"]["id"], "pickup-ready")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["status"], "arrived")


class OrderCancellationTestCase(MarketplaceTestCase):
    def test_vendor_decline_refunds_captured_payment(self):
        ctx = self.paid_order()
        order_id = ctx["order"]["id"]
        res = self.order_action(ctx["vendor"]["token"], order_id, "decline", {"reason": "Out of size 42"})
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        body = res.get_json()
        self.assertEqual(body["order"]["status"], "refunded")
        self.assertEqual(body["order"]["vendor_notes"], "Out of size 42")
        self.assertTrue(body["refund"]["ok"])
        self.assertEqual(body["refund"]["mode"], "manual")
        self.assertEqual(body["refund"]["payment"]["status"], "refunded")
        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=order_id).one().status, "refunded")

    def test_buyer_cancels_before_acceptance_only(self):
        ctx = self.marketplace()
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"])
        res = self.order_action(ctx["buyer"]["token"], order["id"], "cancel", {"reason": "Changed my mind"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["status"], "cancelled_by_customer")
        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=order["id"]).one().status, "refunded")

        accepted = self.accepted_order()
        res = self.order_action(accepted["buyer"]["token"], accepted["order"]["id"], "cancel")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "ORDER_NOT_CANCELLABLE")


if __name__ == "__main__":
    unittest.main()
