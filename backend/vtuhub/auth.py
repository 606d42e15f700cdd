from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from vtuhub.extensions import db
from vtuhub.models import User
from vtuhub.models.user import TIERS
from vtuhub.services.referrals import link_referral
from vtuhub.utils.networks import normalize_phone
from vtuhub.utils.tokens import bearer_from_header, issue_token, read_token
from vtuhub.utils.wallets import get_or_create_wallet

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")


def current_user() -> User | None:
    token = bearer_from_header(request.headers.get("Authorization"))
    if not token:
        return None
    payload = read_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    u = db.session.get(User, uid)
    if not u or u.is_blocked:
        return None
    return u


def is_admin(u: User | None) -> bool:
    return bool(u) and (u.role or "").strip().lower() == "admin"


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or len(password) < 6:
        return jsonify({"message": "email and a password of at least 6 characters are required"}), 400
    phone = normalize_phone(data["phone"]) if (data.get("phone") or "").strip() else None
    u = User(name=(data.get("name") or "").strip(), email=email, phone=phone)
    u.set_password(password)
    try:
        db.session.add(u)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "Email or phone already registered"}), 409
    get_or_create_wallet(int(u.id))
    link_referral(u, data.get("referral_code"))
    return jsonify({"ok": True, "token": issue_token(int(u.id)), "user": u.to_dict()}), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify({"message": "email and password required"}), 400
    u = User.query.filter_by(email=email).first()
    if not u or not u.password_hash or not u.check_password(password):
        return jsonify({"message": "invalid credentials"}), 401
    if u.is_blocked:
        return jsonify({"message": "Account blocked"}), 403
    return jsonify({"ok": True, "token": issue_token(int(u.id)), "user": u.to_dict()}), 200


@auth_bp.post("/users/<int:user_id>/tier")
def set_tier(user_id: int):
    admin = current_user()
    if not is_admin(admin):
        return jsonify({"message": "Forbidden"}), 403
    tier = ((request.get_json(silent=True) or {}).get("tier") or "").strip().lower()
    if tier not in TIERS:
        return jsonify({"message": f"tier must be one of {', '.join(TIERS)}"}), 400
    u = db.session.get(User, user_id)
    if not u:
        return jsonify({"message": "Not found"}), 404
    u.tier = tier
    db.session.commit()
    return jsonify({"ok": True, "user": u.to_dict()}), 200
