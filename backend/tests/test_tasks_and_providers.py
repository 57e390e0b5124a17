from __future__ import annotations

import base64
import os
import unittest
from unittest import mock

import requests

from app.extensions import db
from app.integrations.messaging.resend_provider import ResendEmailProvider
from app.integrations.payments.intasend_provider import IntaSendPaymentsProvider
from app.integrations.payments.mpesa_provider import DarajaMpesaProvider, stk_password
from app.integrations.payments.paystack_provider import PaystackPaymentsProvider, paystack_signature
from app.models import JobRun, NotificationLog
from app.tasks.scale_tasks import process_paystack_webhook_task, run_scheduled_job, send_email_notification
from marketplace_fixtures import MarketplaceTestCase


def _response(status: int, body: dict | None = None):
    res = mock.Mock(status_code=status, content=b"{}" if body is not None else b"", text="")
    res.json.return_value = body or {}
    return res


class DarajaProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = DarajaMpesaProvider(
            consumer_key="ck",
            consumer_secret="cs",
            shortcode="174379",
            passkey="pk",
            callback_url="https://api.solely.test/api/webhooks/mpesa",
        )

    def test_stk_push_sends_whole_shillings(self):
        token = _response(200, {"access_token": "tok-1", "expires_in": "3599"})
        accepted = _response(200, {"ResponseCode": "0", "CheckoutRequestID": "ws_CO_1", "MerchantRequestID": "m-1"})
        with mock.patch("app.integrations.payments.mpesa_provider.requests.get", return_value=token), \
                mock.patch("app.integrations.payments.mpesa_provider.requests.post", return_value=accepted) as post:
            result = self.provider.stk_push(phone="254712345678", amount=2499.6, account_reference="SOLELY-ORDER-12345")
        self.assertEqual(result.checkout_request_id, "ws_CO_1")
        self.assertEqual(result.merchant_request_id, "m-1")
        url = post.call_args[0][0]
        body = post.call_args[1]["json"]
        self.assertTrue(url.endswith("/mpesa/stkpush/v1/processrequest"))
        self.assertEqual(post.call_args[1]["headers"]["Authorization"], "Bearer tok-1")
        self.assertEqual(body["Amount"], 2500)
        self.assertEqual(body["AccountReference"], "SOLELY-ORDER")
        self.assertEqual(body["Password"], stk_password("174379", "pk", body["Timestamp"]))

    def test_auth_and_push_failures(self):
        with mock.patch("app.integrations.payments.mpesa_provider.requests.get", return_value=_response(401, {"errorMessage": "Invalid credentials"})):
            with self.assertRaises(RuntimeError) as ctx:
                self.provider.access_token()
        self.assertEqual(str(ctx.exception), "MPESA_AUTH_FAILED:Invalid credentials")

        rejected = _response(200, {"ResponseCode": "1", "ResponseDescription": "Rejected"})
        with mock.patch("app.integrations.payments.mpesa_provider.requests.get", return_value=_response(200, {"access_token": "t"})), \
                mock.patch("app.integrations.payments.mpesa_provider.requests.post", return_value=rejected):
            with self.assertRaises(RuntimeError) as ctx:
                self.provider.stk_push(phone="254712345678", amount=100, account_reference="A")
        self.assertTrue(str(ctx.exception).startswith("MPESA_STK_PUSH_FAILED:Rejected"))


class PaystackProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = PaystackPaymentsProvider(secret_key="sk_test_live_shape")

    def test_initialize_sends_minor_units(self):
        ok = _response(200, {"status": True, "data": {"authorization_url": "https://checkout.paystack.com/x", "reference": "SOL-1"}})
        with mock.patch("app.integrations.payments.paystack_provider.requests.post", return_value=ok) as post:
            result = self.provider.initialize(order_id=1, amount=1250.5, email="b@solely.test", reference="SOL-1")
        self.assertEqual(post.call_args[1]["json"]["amount"], 125050)
        self.assertEqual(post.call_args[1]["json"]["currency"], "KES")
        self.assertEqual(result.authorization_url, "https://checkout.paystack.com/x")

        with mock.patch("app.integrations.payments.paystack_provider.requests.post", return_value=_response(400, {"status": False, "message": "Invalid key"})):
            with self.assertRaises(RuntimeError) as ctx:
                self.provider.initialize(order_id=1, amount=10, email="b@solely.test", reference="SOL-2")
        self.assertEqual(str(ctx.exception), "PAYSTACK_INIT_FAILED:Invalid key")

    def test_signature_check(self):
        raw = b'{"event":"charge.success"}'
        self.assertTrue(self.provider.verify_signature(raw, paystack_signature("sk_test_live_shape", raw)))
        self.assertFalse(self.provider.verify_signature(raw, paystack_signature("other", raw)))
        self.assertFalse(self.provider.verify_signature(raw, None))


class IntaSendProviderTestCase(unittest.TestCase):
    def test_checkout_is_public_and_send_money_is_authenticated(self):
        provider = IntaSendPaymentsProvider(secret_key="ISSecretKey_test", publishable_key="ISPubKey_test")
        with mock.patch("app.integrations.payments.intasend_provider.requests.post", return_value=_response(200, {"id": "chk-9", "url": "https://pay.intasend.com/chk-9"})) as post:
            result = provider.checkout(order_id=9, amount=3000, email="b@solely.test", first_name="Wanjiru", last_name="K", phone="254712345678")
        self.assertEqual(result.url, "https://pay.intasend.com/chk-9")
        self.assertNotIn("Authorization", post.call_args[1]["headers"])
        self.assertEqual(post.call_args[1]["json"]["api_ref"], "9")
        self.assertEqual(post.call_args[1]["json"]["phone_number"], "254712345678")

        with mock.patch("app.integrations.payments.intasend_provider.requests.post", return_value=_response(200, {"tracking_id": "trk-1", "status": "Preview and approve"})) as post:
            sent = provider.send_money(name="Kicks", account="254712345678", amount=2150, narrative="payout")
        self.assertEqual(sent.reference, "trk-1")
        self.assertEqual(post.call_args[1]["headers"]["Authorization"], "Bearer ISSecretKey_test")
        self.assertEqual(post.call_args[1]["json"]["transactions"][0]["amount"], "2150.00")

    def test_errors(self):
        provider = IntaSendPaymentsProvider(secret_key="s", publishable_key="p")
        with self.assertRaises(RuntimeError) as ctx:
            provider.intra_transfer(to_wallet_id="W1", amount=10, narrative="x")
        self.assertIn("settlement wallet not configured", str(ctx.exception))
        with mock.patch("app.integrations.payments.intasend_provider.requests.post", return_value=_response(400, {"detail": "Invalid invoice"})):
            with self.assertRaises(RuntimeError) as ctx:
                provider.chargeback(invoice="INV-1", amount=10, reason="refund")
        self.assertEqual(str(ctx.exception), "INTASEND_CHARGEBACK_FAILED:Invalid invoice")


class ResendProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = ResendEmailProvider(api_key="re_test")

    def test_send_and_error_mapping(self):
        with mock.patch("app.integrations.messaging.resend_provider.requests.post", return_value=_response(200, {"id": "email-1"})) as post:
            result = self.provider.send_email(to=" vendor@solely.test ", subject="New order", html="<p>hi</p>", reference="notification-1")
        self.assertTrue(result.ok)
        self.assertEqual(result.message, "email-1")
        self.assertEqual(post.call_args[1]["json"]["to"], ["vendor@solely.test"])

        for status, code in ((401, "RESEND_AUTH_FAILED"), (429, "RESEND_RATE_LIMITED"), (422, "RESEND_INVALID_REQUEST"), (503, "RESEND_PROVIDER_DOWN")):
            with mock.patch("app.integrations.messaging.resend_provider.requests.post", return_value=_response(status, {"message": "nope"})):
                result = self.provider.send_email(to="a@b.test", subject="s", html="h")
            self.assertFalse(result.ok)
            self.assertEqual(result.code, code)

        with mock.patch("app.integrations.messaging.resend_provider.requests.post", side_effect=requests.Timeout()):
            result = self.provider.send_email(to="a@b.test", subject="s", html="h")
        self.assertEqual((result.ok, result.code, result.message), (False, "RESEND_PROVIDER_DOWN", "timeout"))


class ScheduledTaskTestCase(MarketplaceTestCase):
    def test_run_scheduled_job_records_run(self):
        with self.app.app_context():
            result = run_scheduled_job.apply(kwargs={"job_name": "auto_release_escrow", "trace_id": "beat-1"}).get()
            self.assertEqual(result["errors"], 0)
            self.assertTrue(JobRun.query.filter_by(job_name="auto_release_escrow").count() >= 1)

            unknown = run_scheduled_job.apply(kwargs={"job_name": "does_not_exist"}).get()
            self.assertEqual(unknown, {"ok": False, "error": "UNKNOWN_JOB", "job_name": "does_not_exist"})

    def test_email_task_redelivers_failed_log(self):
        os.environ["MOCK_NOTIFY_FORCE_FAIL"] = "1"
        try:
            ctx = self.paid_order()
        finally:
            os.environ["MOCK_NOTIFY_FORCE_FAIL"] = ""

        with self.app.app_context():
            log = NotificationLog.query.filter_by(user_id=ctx["vendor"]["id"], type="email").first()
            self.assertEqual(log.status, "failed")
            log_id = int(log.id)

            result = send_email_notification.apply(kwargs={"log_id": log_id, "html": "<p>retry</p>"}).get()
            self.assertEqual(result, {"ok": True, "log_id": log_id})
            db.session.expire_all()
            self.assertEqual(db.session.get(NotificationLog, log_id).status, "sent")

            again = send_email_notification.apply(kwargs={"log_id": log_id, "html": "<p>retry</p>"}).get()
            self.assertFalse(again["ok"])


class QueuedPaystackWebhookTestCase(MarketplaceTestCase):
    # Latin-1 byte inside the signed body.
    RAW = b'{"event":"transfer.success","data":{"id":77,"reference":"trf-caf\xe9"}}'
    PAYLOAD = {"event": "transfer.success", "data": {"id": 77, "reference": "trf-café"}}

    def test_route_queues_exact_raw_bytes(self):
        signature = paystack_signature("sk_test_solely_mock", self.RAW)
        with mock.patch("app.segments.segment_payment_webhooks._paystack_queue_enabled", return_value=True), \
                mock.patch.object(process_paystack_webhook_task, "delay") as delay:
            res = self.client.post(
                "/api/webhooks/paystack",
                data=self.RAW,
                content_type="application/json",
                headers={"X-Paystack-Signature": signature},
            )
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["queued"])
        kwargs = delay.call_args[1]
        self.assertEqual(base64.b64decode(kwargs["raw_b64"]), self.RAW)
        self.assertEqual(kwargs["signature"], signature)

    def test_worker_verifies_signature_over_original_bytes(self):
        signature = paystack_signature("sk_test_solely_mock", self.RAW)
        with self.app.app_context():
            result = process_paystack_webhook_task.apply(
                kwargs={"payload": self.PAYLOAD, "raw_b64": base64.b64encode(self.RAW).decode("ascii"), "signature": signature}
            ).get()
            self.assertEqual(result["status_code"], 200)
            self.assertTrue(result["body"]["ignored"])

            tampered = base64.b64encode(self.RAW.replace(b"77", b"78")).decode("ascii")
            result = process_paystack_webhook_task.apply(
                kwargs={"payload": self.PAYLOAD, "raw_b64": tampered, "signature": signature}
            ).get()
            self.assertEqual(result["status_code"], 401)


if __name__ == "__main__":
    unittest.main()
