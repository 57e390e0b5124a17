from __future__ import annotations

import unittest

from marketplace_fixtures import MarketplaceTestCase


class CatalogApiTestCase(MarketplaceTestCase):
    def test_vendor_creates_and_lists_products(self):
        vendor = self.register_vendor()
        product = self.create_product(
            vendor["token"],
            name="Trail Blazer",
            price=3999.5,
            stock=3,
            images=["https://cdn.solely.test/trail.jpg", ""],
        )
        self.assertEqual(product["vendor_id"], vendor["id"])
        self.assertEqual(product["price_ksh"], 3999.5)
        self.assertEqual(product["images"], ["https://cdn.solely.test/trail.jpg"])

        res = self.client.get("/api/vendor/products", headers=self.auth(vendor["token"]))
        self.assertEqual(res.status_code, 200)
        self.assertIn(product["id"], [p["id"] for p in res.get_json()["items"]])

    def test_buyers_cannot_manage_products(self):
        buyer = self.register("buyer")
        res = self.client.post("/api/vendor/products", json={"name": "Nope", "price_ksh": 100}, headers=self.auth(buyer["token"]))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self.client.post("/api/vendor/products", json={"name": "Nope", "price_ksh": 100}).status_code, 401)

    def test_product_validation(self):
        vendor = self.register_vendor()
        headers = self.auth(vendor["token"])
        bad = [
            {"name": "No price"},
            {"name": "Free", "price_ksh": 0},
            {"name": "Negative stock", "price_ksh": 100, "stock": -1},
            {"name": "", "price_ksh": 100},
            {"name": "Odd status", "price_ksh": 100, "status": "archived"},
        ]
        for payload in bad:
            self.assertEqual(self.client.post("/api/vendor/products", json=payload, headers=headers).status_code, 400, payload)

    def test_public_listing_filters_and_hides_drafts(self):
        vendor = self.register_vendor()
        boots = self.create_product(vendor["token"], name="Chelsea Boot", category="boots")
        self.create_product(vendor["token"], name="Hidden Sandal", category="sandals", status="draft")

        res = self.client.get(f"/api/products?vendor_id={vendor['id']}")
        names = [p["name"] for p in res.get_json()["items"]]
        self.assertIn("Chelsea Boot", names)
        self.assertNotIn("Hidden Sandal", names)

        res = self.client.get("/api/products?category=boots&q=chelsea")
        self.assertEqual([p["id"] for p in res.get_json()["items"]], [boots["id"]])

        self.assertEqual(self.client.get(f"/api/products/{boots['id']}").status_code, 200)
        self.assertEqual(self.client.get("/api/products/999999").status_code, 404)

    def test_only_owner_can_update_product(self):
        owner = self.register_vendor()
        other = self.register_vendor()
        product = self.create_product(owner["token"])

        res = self.client.patch(f"/api/vendor/products/{product['id']}", json={"stock": 9}, headers=self.auth(other["token"]))
        self.assertEqual(res.status_code, 403)

        res = self.client.patch(f"/api/vendor/products/{product['id']}", json={"stock": 9, "status": "draft"}, headers=self.auth(owner["token"]))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["product"]["stock"], 9)
        self.assertEqual(self.client.get(f"/api/products/{product['id']}").status_code, 404)


if __name__ == "__main__":
    unittest.main()
