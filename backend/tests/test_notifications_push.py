from __future__ import annotations

import os
import unittest

from app.models import NotificationLog, PushSubscription
from marketplace_fixtures import MarketplaceTestCase


KEYS = {"p256dh": "BEl62iUYgUivxIkv69yViEuiBIa-Ib9-SkvMeAtA3LFgDzkrxZJjSgSnfckjBJuBkr3qBUYIHBQFLXYp5Nksh8U", "auth": "tBHItJI5svbpez7KI4CCXg"}


class NotificationInboxTestCase(MarketplaceTestCase):
    def test_inbox_lists_and_marks_read(self):
        ctx = self.accepted_order()
        headers = self.auth(ctx["buyer"]["token"])
        res = self.client.get("/api/notifications", headers=headers)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        kinds = [n["kind"] for n in body["items"]]
        self.assertIn("buyer_order_accepted", kinds)
        self.assertEqual(body["unread_count"], len(body["items"]))

        first = body["items"][0]
        res = self.client.post(f"/api/notifications/{first['id']}/read", headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["notification"]["is_read"])

        unread = self.client.get("/api/notifications?unread=1", headers=headers).get_json()
        self.assertNotIn(first["id"], [n["id"] for n in unread["items"]])
        self.assertEqual(unread["unread_count"], len(body["items"]) - 1)

        res = self.client.post("/api/notifications/read-all", headers=headers)
        self.assertEqual(res.get_json()["updated"], len(body["items"]) - 1)
        self.assertEqual(self.client.get("/api/notifications", headers=headers).get_json()["unread_count"], 0)

    def test_other_users_notifications_are_hidden(self):
        ctx = self.paid_order()
        vendor_items = self.client.get("/api/notifications", headers=self.auth(ctx["vendor"]["token"])).get_json()["items"]
        self.assertTrue(vendor_items)
        res = self.client.post(f"/api/notifications/{vendor_items[0]['id']}/read", headers=self.auth(ctx["buyer"]["token"]))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.client.get("/api/notifications").status_code, 401)

    def test_new_order_email_is_logged_as_sent(self):
        ctx = self.paid_order()
        with self.app.app_context():
            logs = NotificationLog.query.filter_by(user_id=ctx["vendor"]["id"], type="email", template="vendor_new_order").all()
            # one on checkout, one once the payment lands
            self.assertEqual(len(logs), 2)
            for log in logs:
                self.assertEqual(log.status, "sent")
                self.assertEqual(log.recipient, ctx["vendor"]["email"])
                self.assertIn(f"#{ctx['order']['id']}", log.subject)

    def test_failed_email_is_recorded(self):
        os.environ["MOCK_NOTIFY_FORCE_FAIL"] = "1"
        try:
            ctx = self.paid_order()
        finally:
            os.environ["MOCK_NOTIFY_FORCE_FAIL"] = ""
        with self.app.app_context():
            logs = NotificationLog.query.filter_by(user_id=ctx["vendor"]["id"], type="email", template="vendor_new_order").all()
            self.assertTrue(logs)
            for log in logs:
                self.assertEqual(log.status, "failed")
                self.assertTrue(log.error.startswith("RESEND_PROVIDER_DOWN"))


class PushSubscriptionTestCase(MarketplaceTestCase):
    def _subscribe(self, token: str, endpoint: str):
        return self.client.post("/api/push/subscribe", json={"endpoint": endpoint, "keys": KEYS}, headers=self.auth(token))

    def test_vapid_key_endpoint(self):
        previous = os.environ.pop("VAPID_PUBLIC_KEY", None)
        try:
            res = self.client.get("/api/push/vapid-public-key")
            self.assertEqual(res.status_code, 404)
            self.assertEqual(res.get_json()["error"], "PUSH_NOT_CONFIGURED")
            os.environ["VAPID_PUBLIC_KEY"] = "BPublicKeyForTests"
            res = self.client.get("/api/push/vapid-public-key")
            self.assertEqual(res.get_json()["public_key"], "BPublicKeyForTests")
        finally:
            os.environ.pop("VAPID_PUBLIC_KEY", None)
            if previous is not None:
                os.environ["VAPID_PUBLIC_KEY"] = previous

    def test_subscribe_validates_and_unsubscribes(self):
        buyer = self.register("buyer")
        res = self._subscribe(buyer["token"], "http://push.example.com/insecure")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_SUBSCRIPTION")

        res = self._subscribe(buyer["token"], "https://push.example.com/sub/buyer-1")
        self.assertEqual(res.status_code, 201)
        again = self._subscribe(buyer["token"], "https://push.example.com/sub/buyer-1")
        self.assertEqual(again.get_json()["subscription_id"], res.get_json()["subscription_id"])

        res = self.client.post("/api/push/unsubscribe", json={"endpoint": "https://push.example.com/sub/buyer-1"}, headers=self.auth(buyer["token"]))
        self.assertTrue(res.get_json()["removed"])
        res = self.client.post("/api/push/unsubscribe", json={"endpoint": "https://push.example.com/sub/buyer-1"}, headers=self.auth(buyer["token"]))
        self.assertFalse(res.get_json()["removed"])

    def test_push_is_delivered_and_expired_endpoints_are_pruned(self):
        ctx = self.marketplace()
        live = "https://push.example.com/sub/vendor-live"
        dead = "https://push.example.com/sub/vendor-expired"
        self.assertEqual(self._subscribe(ctx["vendor"]["token"], live).status_code, 201)
        self.assertEqual(self._subscribe(ctx["vendor"]["token"], dead).status_code, 201)

        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"])
        self.pay_with_mpesa(ctx["buyer"]["token"], order["id"])

        with self.app.app_context():
            logs = {row.recipient: row for row in NotificationLog.query.filter_by(user_id=ctx["vendor"]["id"], type="push").all()}
            self.assertEqual(logs[live].status, "sent")
            self.assertEqual(logs[dead].status, "failed")
            self.assertIn("PUSH_SUBSCRIPTION_EXPIRED", logs[dead].error)
            endpoints = [s.endpoint for s in PushSubscription.query.filter_by(user_id=ctx["vendor"]["id"]).all()]
            self.assertEqual(endpoints, [live])
            self.assertIsNotNone(PushSubscription.query.filter_by(endpoint=live).one().last_used_at)


if __name__ == "__main__":
    unittest.main()
