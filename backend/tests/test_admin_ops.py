from __future__ import annotations

import json
import unittest

from app.models import Notification, NotificationLog, Payment, User
from app.services.notification_service import render_email
from marketplace_fixtures import MarketplaceTestCase


class AdminAccessTestCase(MarketplaceTestCase):
    def test_admin_routes_require_admin_role(self):
        buyer = self.register("buyer")
        for path in ("/api/admin/settings", "/api/admin/jobs", "/api/admin/payouts", "/api/admin/disputes", "/api/admin/webhooks"):
            self.assertEqual(self.client.get(path).status_code, 401, path)
            self.assertEqual(self.client.get(path, headers=self.auth(buyer["token"])).status_code, 403, path)

    def test_settings_patch_validates_mode(self):
        admin = self.make_admin()
        headers = self.auth(admin["token"])
        settings = self.client.get("/api/admin/settings", headers=headers).get_json()["settings"]
        self.assertEqual(settings["integrations_mode"], "sandbox")
        self.assertTrue(settings["mpesa_enabled"])

        res = self.client.patch("/api/admin/settings", json={"integrations_mode": "chaos"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_SETTINGS")

        res = self.client.patch("/api/admin/settings", json={"push_enabled": "off"}, headers=headers)
        self.assertFalse(res.get_json()["settings"]["push_enabled"])
        res = self.client.patch("/api/admin/settings", json={"push_enabled": "on"}, headers=headers)
        self.assertTrue(res.get_json()["settings"]["push_enabled"])


class IntegrationToggleTestCase(MarketplaceTestCase):
    def test_disabled_gateway_returns_service_unavailable(self):
        admin = self.make_admin()
        headers = self.auth(admin["token"])
        ctx = self.marketplace()
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"])

        self.client.patch("/api/admin/settings", json={"mpesa_enabled": False}, headers=headers)
        try:
            res = self.client.post(
                "/api/payments/mpesa/stk-push",
                json={"order_id": order["id"], "phone": "0722000111"},
                headers=self.auth(ctx["buyer"]["token"]),
            )
            self.assertEqual(res.status_code, 503)
            self.assertEqual(res.get_json()["error"], "INTEGRATION_DISABLED")
            self.assertTrue(res.get_json()["trace_id"])

            health = self.client.get("/api/admin/integrations/health", headers=headers).get_json()
            self.assertEqual(health["mode"], "sandbox")
            self.assertEqual(health["payments"]["mpesa"]["status"], "disabled")
            self.assertEqual(health["payments"]["card"]["status"], "configured")
            self.assertEqual(health["messaging"]["email"]["status"], "configured")
        finally:
            self.client.patch("/api/admin/settings", json={"mpesa_enabled": True}, headers=headers)

        self.pay_with_mpesa(ctx["buyer"]["token"], order["id"])
        health = self.client.get("/api/admin/integrations/health", headers=headers).get_json()
        self.assertIsNotNone(health["last_webhook_at"])


class AdminJobsTestCase(MarketplaceTestCase):
    def test_list_and_run_jobs(self):
        admin = self.make_admin()
        headers = self.auth(admin["token"])
        jobs = self.client.get("/api/admin/jobs", headers=headers).get_json()["jobs"]
        self.assertEqual(
            jobs,
            [
                "auto_cancel_stale_orders",
                "auto_dispute_unconfirmed",
                "auto_refund_unshipped",
                "auto_release_escrow",
                "payout_sweep",
                "price_drop_alerts",
                "stop_stale_tracking",
            ],
        )

        res = self.client.post("/api/admin/jobs/auto_release_escrow/run", headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["result"]["processed"], 0)
        res = self.client.post("/api/admin/jobs/reindex_everything/run", headers=headers)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "UNKNOWN_JOB")

        runs = self.client.get("/api/admin/job-runs?job_name=auto_release_escrow", headers=headers).get_json()["items"]
        self.assertTrue(runs)
        self.assertEqual(runs[0]["job_name"], "auto_release_escrow")

    def test_run_job_cli_command(self):
        result = self.app.test_cli_runner().invoke(args=["run-job", "payout_sweep"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(json.loads(result.stdout.strip().splitlines()[-1])["ok"])

        result = self.app.test_cli_runner().invoke(args=["run-job", "nope"])
        self.assertNotEqual(result.exit_code, 0)

    def test_events_and_webhooks_feeds(self):
        admin = self.make_admin()
        headers = self.auth(admin["token"])
        ctx = self.paid_order()

        events = self.client.get(f"/api/admin/events?order_id={ctx['order']['id']}", headers=headers).get_json()["items"]
        self.assertIn("payment_captured", [e["event_type"] for e in events])

        hooks = self.client.get("/api/admin/webhooks?provider=mpesa", headers=headers).get_json()["items"]
        self.assertTrue(hooks)
        self.assertTrue(all(h["provider"] == "mpesa" for h in hooks))


class AdminRefundTestCase(MarketplaceTestCase):
    def test_intasend_refund_uses_chargeback(self):
        admin = self.make_admin()
        ctx = self.marketplace(price=3500)
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"], gateway="intasend")
        self.client.post("/api/payments/intasend/checkout", json={"order_id": order["id"]}, headers=self.auth(ctx["buyer"]["token"]))
        self.client.post("/api/webhooks/intasend", json={"invoice_id": "INV-REFUND-1", "state": "COMPLETE", "api_ref": str(order["id"])})

        res = self.client.post(f"/api/admin/orders/{order['id']}/refund", json={"reason": "wrong_item"}, headers=self.auth(admin["token"]))
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        body = res.get_json()
        self.assertEqual(body["refund"]["mode"], "chargeback")
        self.assertTrue(body["refund"]["reference"].startswith("cb_"))
        self.assertEqual(body["order"]["status"], "refunded")

        with self.app.app_context():
            payment = Payment.query.filter_by(order_id=order["id"]).one()
            self.assertEqual(payment.status, "refunded")
            self.assertEqual(payment.meta_dict()["refund_mode"], "chargeback")

        again = self.client.post(f"/api/admin/orders/{order['id']}/refund", headers=self.auth(admin["token"]))
        self.assertTrue(again.get_json()["refund"]["already_refunded"])

    def test_refund_needs_provider_transaction(self):
        admin = self.make_admin()
        ctx = self.marketplace()
        order = self.new_order(ctx["buyer"]["token"], ctx["product"]["id"])
        res = self.client.post(f"/api/admin/orders/{order['id']}/refund", headers=self.auth(admin["token"]))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "MISSING_TRANSACTION_ID")
        self.assertEqual(self.client.post("/api/admin/orders/999999/refund", headers=self.auth(admin["token"])).status_code, 404)


class AnnouncementTestCase(MarketplaceTestCase):
    BODY = "<p>Up to <b>30%</b> off running shoes this weekend</p>"

    def _announce(self, token: str, payload: dict):
        return self.client.post("/api/admin/announcements", json=payload, headers=self.auth(token))

    def test_broadcast_reaches_the_chosen_audience(self):
        admin = self.make_admin()
        vendor = self.register_vendor()
        buyer = self.register("buyer")
        with self.app.app_context():
            everyone = User.query.count()
            vendors = User.query.filter_by(role="vendor").count()

        res = self._announce(admin["token"], {"subject": "Weekend sale", "html_content": self.BODY, "target_audience": "vendors"})
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        body = res.get_json()
        self.assertEqual((body["total"], body["sent"], body["failed"]), (vendors, vendors, 0))

        with self.app.app_context():
            inbox = Notification.query.filter_by(user_id=vendor["id"], kind="admin_announcement").one()
            self.assertEqual(inbox.title, "Weekend sale")
            self.assertEqual(inbox.message, "Up to 30% off running shoes this weekend")
            self.assertEqual(Notification.query.filter_by(user_id=buyer["id"], kind="admin_announcement").count(), 0)
            log = NotificationLog.query.filter_by(user_id=vendor["id"], template="admin_announcement").one()
            self.assertEqual((log.subject, log.status), ("Weekend sale", "sent"))

        res = self._announce(admin["token"], {"subject": "Hello shoppers", "htmlContent": self.BODY, "targetAudience": "customers"})
        self.assertEqual(res.get_json()["total"], everyone - vendors)
        res = self._announce(admin["token"], {"subject": "Hello all", "html_content": self.BODY, "target_audience": "all"})
        self.assertEqual(res.get_json()["total"], everyone)

    def test_admin_html_is_wrapped_in_the_branded_layout(self):
        with self.app.app_context():
            subject, html = render_email(
                "admin_announcement",
                {"announcement_subject": "Weekend sale", "announcement_text": "", "body_html": self.BODY},
            )
        self.assertEqual(subject, "Weekend sale")
        self.assertIn("<b>30%</b>", html)
        self.assertIn("Sole-ly Kenya", html)

    def test_requires_admin_and_complete_payload(self):
        buyer = self.register("buyer")
        admin = self.make_admin()
        payload = {"subject": "Hi", "html_content": self.BODY, "target_audience": "all"}
        self.assertEqual(self._announce(buyer["token"], payload).status_code, 403)

        for broken in (dict(payload, subject=""), dict(payload, html_content="  "), dict(payload, target_audience="everyone")):
            res = self._announce(admin["token"], broken)
            self.assertEqual(res.status_code, 400)
            self.assertEqual(res.get_json()["error"], "INVALID_ANNOUNCEMENT")


if __name__ == "__main__":
    unittest.main()
