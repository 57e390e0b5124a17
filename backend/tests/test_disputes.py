from __future__ import annotations

import unittest

from app.models import EscrowTransaction, Notification, Payment, Payout
from marketplace_fixtures import MarketplaceTestCase


class DisputeApiTestCase(MarketplaceTestCase):
    def _open(self, ctx, **payload):
        payload.setdefault("reason", "damaged")
        return self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "dispute", payload)

    def test_buyer_opens_dispute_and_escrow_is_withheld(self):
        ctx = self.shipped_order()
        res = self._open(ctx, description="Sole is split", evidence_urls=["https://cdn.solely.test/split.jpg"])
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        dispute = res.get_json()["dispute"]
        self.assertEqual(dispute["status"], "open")
        self.assertEqual(dispute["source"], "buyer")
        self.assertEqual(dispute["evidence_urls"], ["https://cdn.solely.test/split.jpg"])

        order = self.client.get(f"/api/orders/{ctx['order']['id']}", headers=self.auth(ctx["buyer"]["token"])).get_json()["order"]
        self.assertEqual(order["status"], "disputed")
        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=ctx["order"]["id"]).one().status, "withheld")
            self.assertEqual(Notification.query.filter_by(user_id=ctx["vendor"]["id"], kind="dispute_filed").count(), 1)

    def test_dispute_rules(self):
        ctx = self.paid_order()
        res = self._open(ctx)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "ORDER_NOT_DISPUTABLE")

        self.order_action(ctx["vendor"]["token"], ctx["order"]["id"], "accept")
        res = self._open(ctx, reason="too_big")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_REASON")

        res = self.order_action(ctx["vendor"]["token"], ctx["order"]["id"], "dispute", {"reason": "other"})
        self.assertEqual(res.status_code, 403)

        self.assertEqual(self._open(ctx, reason="no_delivery").status_code, 201)
        res = self._open(ctx, reason="other")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "ORDER_NOT_DISPUTABLE")

    def test_visibility_and_vendor_response(self):
        ctx = self.shipped_order()
        dispute = self._open(ctx).get_json()["dispute"]
        stranger = self.register("buyer")

        listed = self.client.get("/api/disputes", headers=self.auth(ctx["vendor"]["token"])).get_json()["items"]
        self.assertEqual([d["id"] for d in listed], [dispute["id"]])
        self.assertEqual(self.client.get(f"/api/disputes/{dispute['id']}", headers=self.auth(stranger["token"])).status_code, 403)
        self.assertEqual(self.client.get("/api/disputes/999999", headers=self.auth(stranger["token"])).status_code, 404)

        res = self.client.post(f"/api/disputes/{dispute['id']}/respond", json={"response": "Shipped intact"}, headers=self.auth(ctx["buyer"]["token"]))
        self.assertEqual(res.status_code, 403)
        res = self.client.post(f"/api/disputes/{dispute['id']}/respond", json={"response": ""}, headers=self.auth(ctx["vendor"]["token"]))
        self.assertEqual(res.status_code, 400)

        res = self.client.post(f"/api/disputes/{dispute['id']}/respond", json={"response": "Shipped intact"}, headers=self.auth(ctx["vendor"]["token"]))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["dispute"]["status"], "under_review")
        self.assertEqual(res.get_json()["dispute"]["vendor_response"], "Shipped intact")


class DisputeResolutionTestCase(MarketplaceTestCase):
    def _disputed(self, **kwargs):
        ctx = self.shipped_order(**kwargs)
        res = self.order_action(ctx["buyer"]["token"], ctx["order"]["id"], "dispute", {"reason": "wrong_item"})
        self.assertEqual(res.status_code, 201)
        ctx["dispute"] = res.get_json()["dispute"]
        ctx["admin"] = self.make_admin()
        return ctx

    def _resolve(self, ctx, resolution: str, token: str | None = None):
        return self.client.post(
            f"/api/admin/disputes/{ctx['dispute']['id']}/resolve",
            json={"resolution": resolution, "notes": "Reviewed photos"},
            headers=self.auth(token or ctx["admin"]["token"]),
        )

    def test_only_admins_resolve(self):
        ctx = self._disputed()
        self.assertEqual(self._resolve(ctx, "refund", token=ctx["vendor"]["token"]).status_code, 403)
        res = self._resolve(ctx, "split")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_RESOLUTION")

    def test_refund_resolution(self):
        ctx = self._disputed()
        res = self._resolve(ctx, "refund")
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json()["dispute"]["status"], "resolved_refund")
        self.assertEqual(res.get_json()["dispute"]["resolution_notes"], "Reviewed photos")

        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=ctx["order"]["id"]).one().status, "refunded")
            self.assertEqual(Payment.query.filter_by(order_id=ctx["order"]["id"]).one().status, "refunded")
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).count(), 0)
            self.assertEqual(Notification.query.filter_by(user_id=ctx["buyer"]["id"], kind="dispute_update").count(), 1)

        again = self._resolve(ctx, "release")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "DISPUTE_NOT_ACTIVE")

    def test_release_resolution_pays_vendor(self):
        ctx = self._disputed(price=2000)
        res = self._resolve(ctx, "release")
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json()["dispute"]["status"], "resolved_release")

        order = self.client.get(f"/api/orders/{ctx['order']['id']}", headers=self.auth(ctx["buyer"]["token"])).get_json()["order"]
        self.assertEqual(order["status"], "completed")
        with self.app.app_context():
            self.assertEqual(EscrowTransaction.query.filter_by(order_id=ctx["order"]["id"]).one().status, "released")
            self.assertEqual(Payout.query.filter_by(order_id=ctx["order"]["id"]).one().amount_ksh, 1800.0)

    def test_admin_lists_disputes_by_status(self):
        ctx = self._disputed()
        items = self.client.get("/api/admin/disputes?status=open", headers=self.auth(ctx["admin"]["token"])).get_json()["items"]
        self.assertIn(ctx["dispute"]["id"], [d["id"] for d in items])
        items = self.client.get("/api/admin/disputes?status=resolved_refund", headers=self.auth(ctx["admin"]["token"])).get_json()["items"]
        self.assertNotIn(ctx["dispute"]["id"], [d["id"] for d in items])


if __name__ == "__main__":
    unittest.main()
