import re

from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import User, VendorProfile
from app.utils.auth import current_user
from app.utils.events import log_event
from app.utils.jwt_utils import create_access_token
from app.utils.observability import get_request_id
from app.utils.phone import normalize_kenyan_phone
from app.utils.rate_limit import rate_limit

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SIGNUP_ROLES = ("buyer", "vendor")


def _conflict_message(email: str, phone: str | None) -> str | None:
    email_user = User.query.filter_by(email=email).first()
    phone_user = User.query.filter_by(phone=phone).first() if phone else None
    if email_user and phone_user and email_user.id != phone_user.id:
        return "Email or phone already in use"
    if phone_user:
        return "Phone already in use"
    if email_user:
        return "Email already in use"
    return None


def _session_payload(user: User) -> dict:
    payload = {"token": create_access_token(int(user.id), role=user.role or "buyer"), "user": user.to_dict()}
    if user.is_vendor:
        profile = VendorProfile.query.filter_by(user_id=int(user.id)).first()
        payload["vendor_profile"] = profile.to_dict() if profile else None
    return payload


@auth_bp.post("/register")
@rate_limit("auth:register", 3600, 20)
def register():
    data = request.get_json(silent=True) or {}
    name = str(data.get("name") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    raw_phone = str(data.get("phone") or "").strip()
    role = str(data.get("role") or "buyer").strip().lower()

    if role == "admin":
        return jsonify({"message": "Admin signup is not allowed"}), 403
    if role not in _SIGNUP_ROLES:
        return jsonify({"message": "role must be buyer or vendor"}), 400
    if not name or not _EMAIL_RE.match(email):
        return jsonify({"message": "A name and a valid email are required"}), 400
    if len(password) < 8:
        return jsonify({"message": "Password must be at least 8 characters"}), 400
    phone = normalize_kenyan_phone(raw_phone) or None

    conflict = _conflict_message(email, phone)
    if conflict:
        return jsonify({"message": conflict}), 409

    try:
        user = User(name=name[:120], email=email, phone=phone, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        if role == "vendor":
            store_name = str(data.get("store_name") or name).strip()[:160]
            mpesa_number = normalize_kenyan_phone(str(data.get("mpesa_number") or raw_phone)) or None
            db.session.add(VendorProfile(user_id=int(user.id), store_name=store_name, mpesa_number=mpesa_number))
        log_event(
            "user_registered",
            actor_user_id=int(user.id),
            request_id=get_request_id(),
            idempotency_key=f"user:{int(user.id)}:registered",
            metadata={"role": role},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "Email or phone already in use"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("register_failed")
        return jsonify({"message": "Registration failed"}), 500
    return jsonify(_session_payload(user)), 201


@auth_bp.post("/login")
@rate_limit("auth:login", 60, 10)
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    if not email or not password:
        return jsonify({"message": "Email and password are required"}), 400
    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return jsonify({"message": "Invalid credentials"}), 401
    return jsonify(_session_payload(user)), 200


@auth_bp.get("/me")
def me():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    payload = user.to_dict()
    if user.is_vendor:
        profile = VendorProfile.query.filter_by(user_id=int(user.id)).first()
        payload["vendor_profile"] = profile.to_dict() if profile else None
    return jsonify(payload), 200
