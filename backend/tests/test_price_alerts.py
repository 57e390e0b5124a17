from __future__ import annotations

import unittest

from app.extensions import db
from app.jobs.registry import run_job
from app.models import Notification, NotificationLog, PriceAlert, Product
from marketplace_fixtures import MarketplaceTestCase


class PriceAlertTestCase(MarketplaceTestCase):
    def _watch(self, token: str, product_id: int, **payload):
        return self.client.post(f"/api/products/{product_id}/price-alert", json=payload, headers=self.auth(token))

    def _reprice(self, vendor_token: str, product_id: int, price: float):
        res = self.client.patch(f"/api/vendor/products/{product_id}", json={"price_ksh": price}, headers=self.auth(vendor_token))
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        return res.get_json()

    def test_price_drop_notifies_watcher_once(self):
        ctx = self.marketplace(price=4000)
        product_id = ctx["product"]["id"]
        buyer = ctx["buyer"]

        res = self._watch(buyer["token"], product_id)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()["alert"]["original_price"], 4000.0)
        self.assertIsNone(res.get_json()["alert"]["target_price"])
        self.assertEqual(self._watch(buyer["token"], product_id).status_code, 201)

        self.assertEqual(self._reprice(ctx["vendor"]["token"], product_id, 4500)["price_alerts_sent"], 0)
        self.assertEqual(self._reprice(ctx["vendor"]["token"], product_id, 3800)["price_alerts_sent"], 1)
        self.assertEqual(self._reprice(ctx["vendor"]["token"], product_id, 3500)["price_alerts_sent"], 0)

        with self.app.app_context():
            self.assertEqual(PriceAlert.query.filter_by(user_id=buyer["id"], product_id=product_id).count(), 1)
            inbox = Notification.query.filter_by(user_id=buyer["id"], kind="price_drop_alert").all()
            self.assertEqual(len(inbox), 1)
            self.assertEqual(inbox[0].link, f"/product/{product_id}")
            self.assertIn("KES 4,000.00 to KES 3,800.00", inbox[0].message)
            log = NotificationLog.query.filter_by(user_id=buyer["id"], template="price_drop_alert", type="email").one()
            self.assertEqual(log.status, "sent")
            self.assertTrue(log.subject.startswith("Price Drop: Air Runner"))

        items = self.client.get("/api/price-alerts", headers=self.auth(buyer["token"])).get_json()["items"]
        self.assertEqual(len(items), 1)
        self.assertFalse(items[0]["is_active"])
        self.assertIsNotNone(items[0]["notified_at"])
        active = self.client.get("/api/price-alerts?active=1", headers=self.auth(buyer["token"])).get_json()["items"]
        self.assertEqual(active, [])

    def test_target_price_waits_for_threshold(self):
        ctx = self.marketplace(price=5000)
        product_id = ctx["product"]["id"]

        res = self._watch(ctx["buyer"]["token"], product_id, target_price=6000)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_TARGET_PRICE")

        res = self._watch(ctx["buyer"]["token"], product_id, target_price=4000)
        self.assertEqual(res.get_json()["alert"]["target_price"], 4000.0)
        self.assertEqual(self._reprice(ctx["vendor"]["token"], product_id, 4500)["price_alerts_sent"], 0)
        self.assertEqual(self._reprice(ctx["vendor"]["token"], product_id, 3999)["price_alerts_sent"], 1)

    def test_unwatch_and_hidden_products(self):
        ctx = self.marketplace()
        product_id = ctx["product"]["id"]
        token = ctx["buyer"]["token"]
        self.assertEqual(self.client.post(f"/api/products/{product_id}/price-alert").status_code, 401)

        self._watch(token, product_id)
        res = self.client.delete(f"/api/products/{product_id}/price-alert", headers=self.auth(token))
        self.assertEqual(res.status_code, 200)
        res = self.client.delete(f"/api/products/{product_id}/price-alert", headers=self.auth(token))
        self.assertEqual(res.status_code, 404)

        draft = self.create_product(ctx["vendor"]["token"], status="draft")
        res = self._watch(token, draft["id"])
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "PRODUCT_NOT_FOUND")

    def test_sweep_catches_drops_made_outside_the_editor(self):
        ctx = self.marketplace(price=3000)
        product_id = ctx["product"]["id"]
        self._watch(ctx["buyer"]["token"], product_id)
        with self.app.app_context():
            db.session.get(Product, product_id).price_ksh = 2600.0
            db.session.commit()
            result = run_job("price_drop_alerts")
            self.assertEqual(result["errors"], 0)
            self.assertEqual(result["notified"], 1)
            self.assertEqual(run_job("price_drop_alerts")["notified"], 0)


class ProductConditionTestCase(MarketplaceTestCase):
    def test_condition_is_recorded_and_validated(self):
        vendor = self.register_vendor()
        fresh = self.create_product(vendor["token"])
        self.assertEqual((fresh["condition"], fresh["condition_notes"]), ("new", ""))

        worn = self.create_product(vendor["token"], condition="like_new", condition_notes="Worn twice indoors")
        self.assertEqual(worn["condition"], "like_new")
        self.assertEqual(worn["condition_notes"], "Worn twice indoors")

        res = self.client.post(
            "/api/vendor/products",
            json={"name": "Boot", "price_ksh": 1500, "condition": "mint"},
            headers=self.auth(vendor["token"]),
        )
        self.assertEqual(res.status_code, 400)

        res = self.client.patch(f"/api/vendor/products/{worn['id']}", json={"condition": "fair"}, headers=self.auth(vendor["token"]))
        self.assertEqual(res.get_json()["product"]["condition"], "fair")


if __name__ == "__main__":
    unittest.main()
