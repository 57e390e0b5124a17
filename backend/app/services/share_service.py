from __future__ import annotations

import os
import re

import requests
from flask import current_app
from markupsafe import escape

from app.extensions import db
from app.models import Product


SITE_URL = "https://solelyshoes.co.ke"
SITE_NAME = "Sole-ly Kenya"
DEFAULT_IMAGE = f"{SITE_URL}/og-image.png"

FALLBACK_SHELL = (
    "<!DOCTYPE html><html lang=\"en\"><head><meta charset=\"utf-8\">"
    "<meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">"
    "<title>Sole-ly Kenya</title>"
    "<meta name=\"description\" content=\"Shop shoes from trusted Kenyan vendors.\">"
    "</head><body><div id=\"root\"></div></body></html>"
)

_TITLE_RE = re.compile(r"<title[^>]*>.*?</title>", re.IGNORECASE | re.DOTALL)
_DESCRIPTION_RE = re.compile(r"<meta\s+name=[\"']description[\"'][^>]*>", re.IGNORECASE)
_SOCIAL_RE = re.compile(r"<meta\s+(?:property|name)=[\"'](?:og:|twitter:|product:)[^\"']*[\"'][^>]*>\s*", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)


def site_url() -> str:
    return (os.getenv("SITE_URL") or SITE_URL).strip().rstrip("/")


def absolute_image(url: str | None) -> str:
    url = (url or "").strip()
    if not url:
        return f"{site_url()}/og-image.png"
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if not url.startswith("/"):
        url = "/" + url
    return f"{site_url()}{url}"


def product_meta(product: Product, *, url: str, truncate_suffix: str = "...") -> dict:
    name = product.name or ""
    price = float(product.price_ksh or 0.0)
    description = (product.description or "").strip() or f"Buy {name} on Sole-ly for KES {price:,.0f}"
    if len(description) > 200:
        description = description[:200] + truncate_suffix
    return {
        "title": f"{name} | Sole-ly",
        "description": description,
        "image": absolute_image(product.images[0] if product.images else ""),
        "url": url,
        "price": f"{price:.2f}",
        "name": name,
    }


def meta_tags(meta: dict) -> str:
    title = escape(meta["title"])
    description = escape(meta["description"])
    image = escape(meta["image"])
    url = escape(meta["url"])
    lines = [
        '<meta property="og:type" content="product">',
        f'<meta property="og:title" content="{title}">',
        f'<meta property="og:description" content="{description}">',
        f'<meta property="og:image" content="{image}">',
        f'<meta property="og:url" content="{url}">',
        f'<meta property="og:site_name" content="{SITE_NAME}">',
        f'<meta property="product:price:amount" content="{escape(meta["price"])}">',
        '<meta property="product:price:currency" content="KES">',
        '<meta name="twitter:card" content="summary_large_image">',
        f'<meta name="twitter:title" content="{title}">',
        f'<meta name="twitter:description" content="{description}">',
        f'<meta name="twitter:image" content="{image}">',
    ]
    return "\n    ".join(lines)


def fetch_spa_shell() -> str:
    url = (os.getenv("SPA_INDEX_URL") or "").strip()
    if not url:
        return FALLBACK_SHELL
    try:
        r = requests.get(url, timeout=5)
    except requests.RequestException as e:
        current_app.logger.warning("spa_shell_fetch_failed url=%s error=%s", url, e)
        return FALLBACK_SHELL
    if r.status_code != 200 or "<head" not in (r.text or "").lower():
        current_app.logger.warning("spa_shell_fetch_failed url=%s status=%s", url, r.status_code)
        return FALLBACK_SHELL
    return r.text


def inject_meta(html: str, meta: dict) -> str:
    """Replace title and description, drop existing social tags, append product tags before </head>."""
    title = escape(meta["title"])
    description = escape(meta["description"])
    out = _SOCIAL_RE.sub("", html)
    if _TITLE_RE.search(out):
        out = _TITLE_RE.sub(lambda _m: f"<title>{title}</title>", out, count=1)
    else:
        out = _HEAD_CLOSE_RE.sub(lambda _m: f"<title>{title}</title>\n</head>", out, count=1)
    description_tag = f'<meta name="description" content="{description}">'
    if _DESCRIPTION_RE.search(out):
        out = _DESCRIPTION_RE.sub(lambda _m: description_tag, out, count=1)
    else:
        out = _HEAD_CLOSE_RE.sub(lambda _m: f"{description_tag}\n</head>", out, count=1)
    tags = meta_tags(meta)
    return _HEAD_CLOSE_RE.sub(lambda _m: f"    {tags}\n</head>", out, count=1)


def _load_product(product_id) -> Product | None:
    try:
        pid = int(str(product_id).strip())
    except (TypeError, ValueError):
        return None
    product = db.session.get(Product, pid)
    if product is None or (product.status or "") != "active":
        return None
    return product


def render_product_page(product_id, *, request_url: str) -> str:
    shell = fetch_spa_shell()
    product = _load_product(product_id)
    if product is None:
        return shell
    return inject_meta(shell, product_meta(product, url=request_url))


def share_page_context(product_id) -> dict | None:
    product = _load_product(product_id)
    if product is None:
        return None
    target = f"{site_url()}/product/{int(product.id)}"
    return product_meta(product, url=target, truncate_suffix="")
