from __future__ import annotations

from flask import Blueprint, Response, redirect, render_template, request

from app.services.share_service import SITE_NAME, site_url, render_product_page, share_page_context

share_bp = Blueprint("share_bp", __name__)


@share_bp.get("/product/<product_id>")
def product_page(product_id: str):
    """SPA shell with product Open Graph tags for crawlers."""
    html = render_product_page(product_id, request_url=request.url)
    resp = Response(html, status=200, mimetype="text/html")
    resp.headers["Cache-Control"] = "public, max-age=300"
    return resp


@share_bp.get("/share/product")
def share_product():
    context = share_page_context(request.args.get("id"))
    if context is None:
        return redirect(f"{site_url()}/shop", code=302)
    resp = Response(render_template("share/product.html", site_name=SITE_NAME, **context), status=200, mimetype="text/html")
    resp.headers["Cache-Control"] = "public, max-age=300"
    return resp
