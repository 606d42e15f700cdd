from __future__ import annotations

from flask import Blueprint, jsonify, request

from vtuhub.auth import current_user
from vtuhub.extensions import db
from vtuhub.models import SpinReward
from vtuhub.services.spin import (
    claim_reward,
    pending_rewards,
    perform_spin,
    seed_default_rewards,
    spin_history,
    spin_status,
)

spin_bp = Blueprint("spin_bp", __name__, url_prefix="/api/spin")

_INIT = False


@spin_bp.before_app_request
def _ensure_rewards_once():
    global _INIT
    if _INIT:
        return
    db.create_all()
    seed_default_rewards()
    _INIT = True


@spin_bp.get("/rewards")
def rewards():
    rows = SpinReward.query.filter_by(is_active=True).order_by(SpinReward.id.asc()).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@spin_bp.post("")
def spin():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    win = perform_spin(u, phone=data.get("phone"), network=data.get("network"))
    return jsonify({"ok": True, "win": win.to_dict()}), 200


@spin_bp.get("/status")
def status():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, **spin_status(int(u.id))}), 200


@spin_bp.get("/history")
def history():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "items": [w.to_dict() for w in spin_history(int(u.id))]}), 200


@spin_bp.get("/pending")
def pending():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "items": [w.to_dict() for w in pending_rewards(int(u.id))]}), 200


@spin_bp.post("/claim")
def claim():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    if not data.get("win_id"):
        return jsonify({"message": "win_id required"}), 400
    win = claim_reward(u, data.get("win_id"), phone=data.get("phone"), network=data.get("network"))
    return jsonify({"ok": True, "win": win.to_dict()}), 200
