from __future__ import annotations

from flask import Blueprint, jsonify, request

from vtuhub.auth import current_user, is_admin
from vtuhub.jobs.daily_data_runner import run_daily_deliveries
from vtuhub.jobs.wallet_reconciler import flag_stale_processing, reconcile_wallets
from vtuhub.models import AuditLog
from vtuhub.services.daily_data import delivery_logs
from vtuhub.services.purchases import resolve_processing

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


def _int_arg(name: str):
    raw = (request.args.get(name) or "").strip()
    return int(raw) if raw.isdigit() else None


@admin_bp.get("/delivery-logs")
def list_delivery_logs():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Forbidden"}), 403
    rows = delivery_logs(
        user_id=_int_arg("user_id"),
        plan_id=_int_arg("plan_id"),
        status=(request.args.get("status") or "").strip() or None,
        limit=min(_int_arg("limit") or 100, 500),
    )
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_bp.post("/transactions/<int:txn_id>/resolve")
def resolve_transaction(txn_id: int):
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Forbidden"}), 403
    data = request.get_json(silent=True) or {}
    txn = resolve_processing(txn_id, (data.get("outcome") or "").strip().lower(), actor_user_id=int(u.id), note=data.get("note") or "")
    return jsonify({"ok": True, "transaction": txn.to_dict()}), 200


@admin_bp.post("/reconcile")
def reconcile():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Forbidden"}), 403
    wallets = reconcile_wallets()
    stale = flag_stale_processing()
    return jsonify({"ok": True, "wallets": wallets, "stale_processing": stale}), 200


@admin_bp.post("/daily-data/run")
def run_deliveries():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Forbidden"}), 403
    return jsonify(run_daily_deliveries()), 200


@admin_bp.get("/audit")
def audit_logs():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Forbidden"}), 403
    action = (request.args.get("action") or "").strip()
    q = AuditLog.query
    if action:
        q = q.filter_by(action=action)
    rows = q.order_by(AuditLog.created_at.desc()).limit(200).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200
