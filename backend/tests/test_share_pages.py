from __future__ import annotations

import unittest
from unittest import mock

import requests

from app.services.share_service import absolute_image, inject_meta
from marketplace_fixtures import MarketplaceTestCase


SPA_INDEX = (
    "<!doctype html><html><head><title>Sole-ly</title>"
    '<meta name="description" content="Shoes">'
    '<meta property="og:title" content="Generic">'
    '<meta name="twitter:card" content="summary">'
    '<script type="module" src="/assets/index.js"></script>'
    "</head><body><div id=\"root\"></div></body></html>"
)


class ShareMetaTestCase(unittest.TestCase):
    def test_inject_meta_replaces_generic_tags(self):
        meta = {
            "title": "Air Runner | Sole-ly",
            "description": "Light road shoe",
            "image": "https://cdn.solely.test/a.jpg",
            "url": "https://solelyshoes.co.ke/product/1",
            "price": "2500.00",
            "name": "Air Runner",
        }
        html = inject_meta(SPA_INDEX, meta)
        self.assertIn("<title>Air Runner | Sole-ly</title>", html)
        self.assertIn('<meta name="description" content="Light road shoe">', html)
        self.assertNotIn('content="Generic"', html)
        self.assertNotIn('content="summary"', html)
        self.assertEqual(html.count('property="og:title"'), 1)
        self.assertIn('/assets/index.js', html)
        self.assertLess(html.index('og:image'), html.index("</head>"))

    def test_absolute_image(self):
        self.assertEqual(absolute_image("https://cdn.solely.test/x.jpg"), "https://cdn.solely.test/x.jpg")
        self.assertTrue(absolute_image("uploads/x.jpg").endswith("/uploads/x.jpg"))
        self.assertTrue(absolute_image("").endswith("/og-image.png"))


class SharePagesTestCase(MarketplaceTestCase):
    def _product(self, **extra):
        vendor = self.register_vendor()
        return self.create_product(vendor["token"], **extra)

    def test_product_page_injects_escaped_meta(self):
        product = self._product(name='Kamau "Pro" <Runner> & Co', price=4200, images=["/uploads/pro.jpg"])
        res = self.client.get(f"/product/{product['id']}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers["Cache-Control"], "public, max-age=300")
        html = res.get_data(as_text=True)
        self.assertIn("&lt;Runner&gt; &amp; Co | Sole-ly", html)
        self.assertNotIn("<Runner>", html)
        self.assertIn('content="4200.00"', html)
        self.assertIn("/uploads/pro.jpg", html)
        self.assertIn("Buy Kamau", html)

    def test_long_descriptions_are_truncated(self):
        product = self._product(description="x" * 300)
        html = self.client.get(f"/product/{product['id']}").get_data(as_text=True)
        self.assertIn("x" * 200 + "...", html)
        self.assertNotIn("x" * 201, html)

    def test_unknown_product_serves_plain_shell(self):
        res = self.client.get("/product/999999")
        self.assertEqual(res.status_code, 200)
        self.assertIn("<title>Sole-ly Kenya</title>", res.get_data(as_text=True))
        self.assertNotIn("og:title", res.get_data(as_text=True))

    def test_draft_product_is_not_published(self):
        product = self._product(name="Secret Sample", status="draft")
        self.assertEqual(product["status"], "draft")
        html = self.client.get(f"/product/{product['id']}").get_data(as_text=True)
        self.assertNotIn("Secret Sample", html)
        self.assertNotIn("og:title", html)
        res = self.client.get(f"/share/product?id={product['id']}")
        self.assertEqual(res.status_code, 302)
        self.assertTrue(res.headers["Location"].endswith("/shop"))

    def test_spa_index_is_fetched_when_configured(self):
        product = self._product(name="Trail Pro")
        fake = mock.Mock(status_code=200, text=SPA_INDEX)
        with mock.patch.dict("os.environ", {"SPA_INDEX_URL": "https://app.solely.test/index.html"}):
            with mock.patch("app.services.share_service.requests.get", return_value=fake) as get:
                html = self.client.get(f"/product/{product['id']}").get_data(as_text=True)
        get.assert_called_once_with("https://app.solely.test/index.html", timeout=5)
        self.assertIn("/assets/index.js", html)
        self.assertIn("<title>Trail Pro | Sole-ly</title>", html)

    def test_spa_fetch_failure_falls_back(self):
        product = self._product(name="Fallback Runner")
        with mock.patch.dict("os.environ", {"SPA_INDEX_URL": "https://app.solely.test/index.html"}):
            with mock.patch("app.services.share_service.requests.get", side_effect=requests.ConnectionError("down")):
                html = self.client.get(f"/product/{product['id']}").get_data(as_text=True)
        self.assertIn('<div id="root"></div>', html)
        self.assertIn("Fallback Runner | Sole-ly", html)

    def test_share_redirect_page(self):
        product = self._product(name="Share Me")
        res = self.client.get(f"/share/product?id={product['id']}")
        self.assertEqual(res.status_code, 200)
        html = res.get_data(as_text=True)
        self.assertIn(f"/product/{product['id']}", html)
        self.assertIn('http-equiv="refresh"', html)

        for bad in ("999999", "abc", ""):
            res = self.client.get(f"/share/product?id={bad}")
            self.assertEqual(res.status_code, 302)
            self.assertTrue(res.headers["Location"].endswith("/shop"))


if __name__ == "__main__":
    unittest.main()
