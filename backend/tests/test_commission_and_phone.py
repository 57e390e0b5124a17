from __future__ import annotations

import os
import unittest
from types import SimpleNamespace
from unittest import mock

from app.utils.commission import (
    compute_order_totals,
    kes_to_usd_cents,
    order_payout_amount,
    withdraw_fee,
)
from app.utils.phone import normalize_kenyan_phone


class OrderTotalsTestCase(unittest.TestCase):
    def test_commission_is_charged_on_product_value_only(self):
        totals = compute_order_totals(2500, 300)
        self.assertEqual(totals["subtotal_ksh"], 2500.0)
        self.assertEqual(totals["shipping_fee_ksh"], 300.0)
        self.assertEqual(totals["total_ksh"], 2800.0)
        self.assertEqual(totals["commission_rate"], 0.1)
        self.assertEqual(totals["commission_amount"], 250.0)
        self.assertEqual(totals["payout_amount"], 2550.0)

    def test_half_up_rounding(self):
        totals = compute_order_totals("999.95", 0)
        self.assertEqual(totals["commission_amount"], 100.0)  # 99.995 -> 100.00
        self.assertEqual(totals["payout_amount"], 899.95)

    def test_negative_shipping_is_ignored(self):
        totals = compute_order_totals(1000, -50)
        self.assertEqual(totals["shipping_fee_ksh"], 0.0)
        self.assertEqual(totals["total_ksh"], 1000.0)

    def test_rate_override(self):
        self.assertEqual(compute_order_totals(1000, 0, rate="0.15")["commission_amount"], 150.0)
        with mock.patch.dict(os.environ, {"COMMISSION_RATE": "0.05"}):
            self.assertEqual(compute_order_totals(1000, 0)["commission_amount"], 50.0)
        with mock.patch.dict(os.environ, {"COMMISSION_RATE": "7"}):
            self.assertEqual(compute_order_totals(1000, 0)["commission_rate"], 0.1)

    def test_payout_falls_back_to_legacy_share(self):
        self.assertEqual(order_payout_amount(SimpleNamespace(payout_amount=1234.5, total_ksh=9999)), 1234.5)
        self.assertEqual(order_payout_amount(SimpleNamespace(payout_amount=None, total_ksh=2000)), 1800.0)
        self.assertEqual(order_payout_amount(SimpleNamespace(payout_amount=0, total_ksh=1000)), 900.0)


class WithdrawFeeTestCase(unittest.TestCase):
    def test_tiers(self):
        self.assertEqual(withdraw_fee(50), 10)
        self.assertEqual(withdraw_fee(100), 10)
        self.assertEqual(withdraw_fee(101), 20)
        self.assertEqual(withdraw_fee(1000), 20)
        self.assertEqual(withdraw_fee("1000.01"), 100)
        self.assertEqual(withdraw_fee(25000), 100)

    def test_usd_conversion_for_cards(self):
        self.assertEqual(kes_to_usd_cents(1000), 650)
        self.assertEqual(kes_to_usd_cents(0), 0)
        with mock.patch.dict(os.environ, {"KES_TO_USD_RATE": "0.01"}):
            self.assertEqual(kes_to_usd_cents(1000), 1000)


class PhoneNormalizationTestCase(unittest.TestCase):
    def test_local_and_international_forms(self):
        self.assertEqual(normalize_kenyan_phone("0712345678"), "254712345678")
        self.assertEqual(normalize_kenyan_phone("+254 712 345 678"), "254712345678")
        self.assertEqual(normalize_kenyan_phone("254712345678"), "254712345678")
        self.assertEqual(normalize_kenyan_phone("712-345-678"), "254712345678")

    def test_empty_input(self):
        self.assertEqual(normalize_kenyan_phone(None), "")
        self.assertEqual(normalize_kenyan_phone(""), "")
        self.assertEqual(normalize_kenyan_phone("tel:"), "")


if __name__ == "__main__":
    unittest.main()
