from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.extensions import db
from app.models import Product
from app.models.product import CONDITIONS
from app.services.price_alert_service import list_price_alerts, notify_price_drop, unwatch_price, watch_price
from app.utils.auth import current_user, is_vendor
from app.utils.commission import ksh_float, to_decimal

catalog_bp = Blueprint("catalog_bp", __name__, url_prefix="/api")

_INIT_DONE = False

_EDITABLE = ("name", "description", "brand", "category")


@catalog_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    db.create_all()
    _INIT_DONE = True


def _apply_fields(product: Product, data: dict) -> str | None:
    for key in _EDITABLE:
        if key in data:
            setattr(product, key, (str(data.get(key) or "").strip() or None))
    if "price_ksh" in data:
        price = to_decimal(data.get("price_ksh"))
        if price <= 0:
            return "price_ksh must be greater than 0"
        product.price_ksh = ksh_float(price)
    if "stock" in data:
        try:
            stock = int(data.get("stock"))
        except (TypeError, ValueError):
            return "stock must be an integer"
        if stock < 0:
            return "stock cannot be negative"
        product.stock = stock
    if "images" in data:
        if not isinstance(data.get("images"), list):
            return "images must be a list of urls"
        product.images = data.get("images")
    if "condition" in data:
        condition = str(data.get("condition") or "").strip().lower()
        if condition not in CONDITIONS:
            return "condition must be one of new, like_new, good, fair"
        product.condition = condition
    if "condition_notes" in data:
        product.condition_notes = (str(data.get("condition_notes") or "").strip() or None)
    if "status" in data:
        status = str(data.get("status") or "").strip().lower()
        if status not in ("active", "draft"):
            return "status must be active or draft"
        product.status = status
    if not (product.name or "").strip():
        return "name is required"
    return None


@catalog_bp.get("/products")
def list_products():
    q = Product.query.filter_by(status="active")
    category = (request.args.get("category") or "").strip()
    if category:
        q = q.filter(Product.category == category)
    vendor_id = request.args.get("vendor_id", type=int)
    if vendor_id:
        q = q.filter(Product.vendor_id == vendor_id)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter((Product.name.ilike(like)) | (Product.brand.ilike(like)))
    limit = max(1, min(request.args.get("limit", default=50, type=int) or 50, 200))
    items = q.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in items]}), 200


@catalog_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    product = db.session.get(Product, product_id)
    if not product or product.status != "active":
        return jsonify({"message": "Product not found"}), 404
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@catalog_bp.get("/vendor/products")
def vendor_products():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not is_vendor(user):
        return jsonify({"message": "Vendor account required"}), 403
    items = Product.query.filter_by(vendor_id=int(user.id)).order_by(Product.id.desc()).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in items]}), 200


@catalog_bp.post("/vendor/products")
def create_product():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not is_vendor(user):
        return jsonify({"message": "Vendor account required"}), 403
    data = request.get_json(silent=True) or {}
    if "price_ksh" not in data:
        return jsonify({"message": "price_ksh is required"}), 400
    product = Product(vendor_id=int(user.id), name=str(data.get("name") or "").strip()[:200], status="active", stock=0, condition="new")
    error = _apply_fields(product, data)
    if error:
        return jsonify({"message": error}), 400
    db.session.add(product)
    db.session.commit()
    return jsonify({"ok": True, "product": product.to_dict()}), 201


@catalog_bp.patch("/vendor/products/<int:product_id>")
def update_product(product_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"message": "Product not found"}), 404
    if int(product.vendor_id) != int(user.id) and not user.is_admin:
        return jsonify({"message": "Forbidden"}), 403
    previous_price = float(product.price_ksh or 0.0)
    error = _apply_fields(product, request.get_json(silent=True) or {})
    if error:
        db.session.rollback()
        return jsonify({"message": error}), 400
    db.session.commit()
    alerts_sent = 0
    if float(product.price_ksh or 0.0) < previous_price:
        alerts_sent = notify_price_drop(product)
    return jsonify({"ok": True, "product": product.to_dict(), "price_alerts_sent": alerts_sent}), 200


@catalog_bp.get("/price-alerts")
def my_price_alerts():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    active_only = (request.args.get("active") or "").strip().lower() in ("1", "true", "yes")
    return jsonify({"ok": True, "items": [a.to_dict() for a in list_price_alerts(user, active_only=active_only)]}), 200


@catalog_bp.post("/products/<int:product_id>/price-alert")
def watch_product_price(product_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    alert = watch_price(user, product_id, target_price=data.get("target_price"))
    return jsonify({"ok": True, "alert": alert.to_dict()}), 201


@catalog_bp.delete("/products/<int:product_id>/price-alert")
def unwatch_product_price(product_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not unwatch_price(user, product_id):
        return jsonify({"message": "Price alert not found"}), 404
    return jsonify({"ok": True}), 200
