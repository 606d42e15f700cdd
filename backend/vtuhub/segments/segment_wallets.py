from __future__ import annotations

from flask import Blueprint, jsonify, request

from vtuhub.auth import current_user, is_admin
from vtuhub.extensions import db
from vtuhub.models import User, VtuTransaction
from vtuhub.services.referrals import claim_referral_reward, referral_summary
from vtuhub.utils.notify import notify
from vtuhub.utils.wallets import credit, get_or_create_wallet, withdraw_reward_balance

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api/wallet")


@wallets_bp.get("")
def my_wallet():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    w = get_or_create_wallet(int(u.id))
    return jsonify({"ok": True, "wallet": w.to_dict()}), 200


@wallets_bp.get("/ledger")
def my_ledger():
    u = current_user()
    if not u:
        return jsonify([]), 200
    rows = (
        VtuTransaction.query
        .filter_by(user_id=int(u.id))
        .filter(VtuTransaction.status == "success")
        .order_by(VtuTransaction.created_at.desc(), VtuTransaction.id.desc())
        .limit(200)
        .all()
    )
    return jsonify([t.to_dict() for t in rows]), 200


@wallets_bp.post("/withdraw-reward")
def withdraw_reward():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    amount = (request.get_json(silent=True) or {}).get("amount")
    txn = withdraw_reward_balance(int(u.id), amount)
    w = get_or_create_wallet(int(u.id))
    return jsonify({"ok": True, "transaction": txn.to_dict(), "wallet": w.to_dict()}), 200


@wallets_bp.get("/referrals")
def my_referrals():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, **referral_summary(int(u.id))}), 200


@wallets_bp.post("/referrals/<int:referral_id>/claim")
def claim_referral(referral_id: int):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "message": "Reward claimed", **claim_referral_reward(int(u.id), referral_id)}), 200


@wallets_bp.post("/admin/credit")
def admin_credit():
    admin = current_user()
    if not is_admin(admin):
        return jsonify({"message": "Forbidden"}), 403
    data = request.get_json(silent=True) or {}
    try:
        user_id = int(data.get("user_id"))
    except (TypeError, ValueError):
        return jsonify({"message": "user_id required"}), 400
    if not db.session.get(User, user_id):
        return jsonify({"message": "User not found"}), 404

    txn = credit(
        user_id,
        data.get("amount"),
        reference=(data.get("reference") or "").strip() or None,
        description=(data.get("note") or "Wallet funding")[:255],
        meta={"by": int(admin.id)},
    )
    notify(user_id, "wallet_credit", {"reference": txn.reference, "status": "successful", "amount": str(txn.amount)})
    return jsonify({"ok": True, "transaction": txn.to_dict()}), 200
