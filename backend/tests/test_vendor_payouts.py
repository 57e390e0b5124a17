from __future__ import annotations

import unittest

from app.models import Payout, VendorBalance
from marketplace_fixtures import MarketplaceTestCase


class VendorProfileTestCase(MarketplaceTestCase):
    def test_profile_update_and_validation(self):
        vendor = self.register_vendor()
        headers = self.auth(vendor["token"])

        res = self.client.patch("/api/vendor/profile", json={"payout_method": "paypal"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.patch("/api/vendor/profile", json={"mpesa_number": "12345"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.patch("/api/vendor/profile", json={"store_name": "  "}, headers=headers)
        self.assertEqual(res.status_code, 400)

        res = self.client.patch(
            "/api/vendor/profile",
            json={"mpesa_number": "0799 111 222", "payout_method": "bank", "bank_name": "KCB", "bank_account_number": "1100223344"},
            headers=headers,
        )
        self.assertEqual(res.status_code, 200)
        profile = res.get_json()["profile"]
        self.assertEqual(profile["mpesa_number"], "254799111222")
        self.assertEqual(profile["payout_method"], "bank")
        self.assertEqual(self.client.get("/api/vendor/profile", headers=headers).get_json()["profile"]["bank_name"], "KCB")

    def test_buyers_have_no_vendor_profile(self):
        buyer = self.register("buyer")
        self.assertEqual(self.client.get("/api/vendor/balance", headers=self.auth(buyer["token"])).status_code, 403)
        self.assertEqual(self.client.get("/api/vendor/balance").status_code, 401)


class VendorPayoutTestCase(MarketplaceTestCase):
    def _earned(self, price: float = 2500.0) -> dict:
        ctx = self.shipped_order(price=price)
        res = self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "confirm")
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        return ctx

    def test_balance_summary(self):
        ctx = self._earned()
        res = self.client.get("/api/vendor/balance", headers=self.auth(ctx["vendor"]["token"]))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["balance"]["pending_balance"], 2250.0)
        self.assertEqual(body["balance"]["total_earned"], 2250.0)
        self.assertEqual(body["auto_payout_minimum"], 1500)
        self.assertEqual(body["manual_payout_minimum"], 500)
        self.assertEqual(body["payout_fee"], 100)
        self.assertEqual([p["order_id"] for p in body["payouts"]], [ctx["order"]["id"]])

    def test_manual_request_below_minimum(self):
        vendor = self.register_vendor()
        res = self.client.post("/api/vendor/payouts/request", headers=self.auth(vendor["token"]))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "BELOW_MINIMUM")
        self.assertEqual(res.get_json()["balance"], 0.0)

    def test_manual_request_deducts_fee_and_admin_marks_paid(self):
        ctx = self._earned()
        res = self.client.post("/api/vendor/payouts/request", headers=self.auth(ctx["vendor"]["token"]))
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        payout = res.get_json()["payout"]
        self.assertEqual(payout["amount_ksh"], 2150.0)
        self.assertEqual(payout["status"], "processing")
        self.assertEqual(payout["transfer_fee_ksh"], 100.0)
        self.assertEqual(payout["fee_paid_by"], "vendor")
        self.assertEqual(payout["balance_before"], 2250.0)
        self.assertEqual(payout["destination"], "254712345678")

        with self.app.app_context():
            self.assertEqual(VendorBalance.query.filter_by(vendor_id=ctx["vendor"]["id"]).one().pending_balance, 0.0)
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().status, "processing")

        admin = self.make_admin()
        res = self.client.post(f"/api/admin/payouts/{payout['id']}/mark-paid", json={"reference": "MPESA-REF-1"}, headers=self.auth(admin["token"]))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payout"]["reference"], "MPESA-REF-1")
        with self.app.app_context():
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().status, "paid")

        res = self.client.post(f"/api/admin/payouts/{payout['id']}/mark-failed", headers=self.auth(admin["token"]))
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "INVALID_PAYOUT_STATUS")

    def test_failed_manual_payout_restores_balance(self):
        ctx = self._earned(price=1000)
        payout = self.client.post("/api/vendor/payouts/request", headers=self.auth(ctx["vendor"]["token"])).get_json()["payout"]
        self.assertEqual(payout["amount_ksh"], 800.0)

        admin = self.make_admin()
        res = self.client.post(
            f"/api/admin/payouts/{payout['id']}/mark-failed",
            json={"reason": "M-Pesa number inactive"},
            headers=self.auth(admin["token"]),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payout"]["failure_reason"], "M-Pesa number inactive")

        with self.app.app_context():
            balance = VendorBalance.query.filter_by(vendor_id=ctx["vendor"]["id"]).one()
            self.assertEqual(balance.pending_balance, 900.0)
            self.assertEqual(balance.total_paid_out, 0.0)
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().status, "pending")

        listed = self.client.get("/api/admin/payouts?status=failed", headers=self.auth(admin["token"])).get_json()["items"]
        self.assertIn(payout["id"], [p["id"] for p in listed])
        self.assertEqual(self.client.post("/api/admin/payouts/999999/mark-paid", headers=self.auth(admin["token"])).status_code, 404)


class WalletWithdrawalTestCase(MarketplaceTestCase):
    def test_withdraw_requires_wallet_and_balance(self):
        vendor = self.register_vendor()
        headers = self.auth(vendor["token"])
        res = self.client.post("/api/vendor/withdraw", headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "WALLET_NOT_FOUND")

        self.assertEqual(self.client.post("/api/vendor/wallet", headers=headers).status_code, 200)
        res = self.client.post("/api/vendor/withdraw", headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "NO_BALANCE")

    def test_wallet_creation_is_idempotent(self):
        vendor = self.register_vendor(store_name="Kicks  Corner")
        first = self.client.post("/api/vendor/wallet", headers=self.auth(vendor["token"])).get_json()
        second = self.client.post("/api/vendor/wallet", headers=self.auth(vendor["token"])).get_json()
        self.assertEqual(first["wallet_id"], second["wallet_id"])
        self.assertEqual(first["label"], "solely-kicks-corner")

    def test_withdraw_sends_balance_less_tiered_fee(self):
        ctx = self.shipped_order(price=2500)
        headers = self.auth(ctx["vendor"]["token"])
        self.client.post("/api/vendor/wallet", headers=headers)
        self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "confirm")

        res = self.client.post("/api/vendor/withdraw", headers=headers)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        body = res.get_json()
        self.assertEqual(body["amount"], 2250.0)
        self.assertEqual(body["fee"], 100)
        self.assertEqual(body["net_amount"], 2150.0)
        self.assertEqual(body["new_balance"], 0.0)
        self.assertEqual(body["payout"]["status"], "paid")
        self.assertTrue(body["payout"]["reference"].startswith("sm_"))

        with self.app.app_context():
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().status, "paid")


if __name__ == "__main__":
    unittest.main()
