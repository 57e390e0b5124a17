from __future__ import annotations

import unittest

from marketplace_fixtures import PASSWORD, MarketplaceTestCase


class AuthApiTestCase(MarketplaceTestCase):
    def test_buyer_registration_returns_token_and_user(self):
        buyer = self.register("buyer", phone="0711 222 333")
        user = buyer["body"]["user"]
        self.assertEqual(user["role"], "buyer")
        self.assertEqual(user["phone"], "254711222333")
        self.assertNotIn("vendor_profile", buyer["body"])
        self.assertTrue(buyer["token"])

    def test_vendor_registration_creates_profile(self):
        vendor = self.register_vendor(store_name="Kicks Kenya", mpesa_number="+254 712 000 999")
        profile = vendor["body"]["vendor_profile"]
        self.assertEqual(profile["store_name"], "Kicks Kenya")
        self.assertEqual(profile["mpesa_number"], "254712000999")
        self.assertEqual(profile["payout_method"], "mpesa")

    def test_admin_signup_is_rejected(self):
        res = self.client.post(
            "/api/auth/register",
            json={"name": "Sneaky", "email": "sneaky@solely.test", "password": PASSWORD, "role": "admin"},
        )
        self.assertEqual(res.status_code, 403)

    def test_invalid_payloads_are_rejected(self):
        cases = [
            {"name": "A", "email": "a@solely.test", "password": PASSWORD, "role": "driver"},
            {"name": "", "email": "b@solely.test", "password": PASSWORD},
            {"name": "C", "email": "not-an-email", "password": PASSWORD},
            {"name": "D", "email": "d@solely.test", "password": "short"},
        ]
        for payload in cases:
            res = self.client.post("/api/auth/register", json=payload)
            self.assertEqual(res.status_code, 400, payload)

    def test_duplicate_email_conflicts(self):
        buyer = self.register("buyer")
        res = self.client.post(
            "/api/auth/register",
            json={"name": "Again", "email": buyer["email"].upper(), "password": PASSWORD},
        )
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["message"], "Email already in use")

    def test_login_and_me(self):
        vendor = self.register_vendor()
        res = self.client.post("/api/auth/login", json={"email": vendor["email"], "password": PASSWORD})
        self.assertEqual(res.status_code, 200)
        token = res.get_json()["token"]

        me = self.client.get("/api/auth/me", headers=self.auth(token))
        self.assertEqual(me.status_code, 200)
        body = me.get_json()
        self.assertEqual(body["id"], vendor["id"])
        self.assertEqual(body["vendor_profile"]["store_name"], "Nairobi Kicks")

    def test_login_with_wrong_password(self):
        buyer = self.register("buyer")
        res = self.client.post("/api/auth/login", json={"email": buyer["email"], "password": "wrong-password"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["message"], "Invalid credentials")

    def test_me_requires_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        res = self.client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)


class AuthRateLimitTestCase(MarketplaceTestCase):
    extra_env = {"RATE_LIMIT_ENABLED": "1", "RATE_LIMIT_IN_TESTS": "1"}

    def setUp(self):
        from app.utils.rate_limit import reset_limiter_state

        reset_limiter_state()

    def tearDown(self):
        from app.utils.rate_limit import reset_limiter_state

        reset_limiter_state()

    def test_login_is_throttled_per_ip(self):
        statuses = []
        for _ in range(12):
            res = self.client.post("/api/auth/login", json={"email": "nobody@solely.test", "password": "whatever1"})
            statuses.append(res.status_code)
        self.assertEqual(statuses[:10], [401] * 10)
        self.assertEqual(statuses[-1], 429)
        last = self.client.post("/api/auth/login", json={"email": "nobody@solely.test", "password": "whatever1"})
        self.assertEqual(last.get_json()["error"], "RATE_LIMITED")
        self.assertTrue(last.headers.get("Retry-After") or last.get_json().get("retry_after"))


if __name__ == "__main__":
    unittest.main()
