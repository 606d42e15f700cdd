from __future__ import annotations

from flask import Blueprint, jsonify, request

from vtuhub.auth import current_user
from vtuhub.errors import VtuError
from vtuhub.extensions import db
from vtuhub.models import DailyDataPlan, IssuedPin, VtuTransaction
from vtuhub.services.airtime import purchase_airtime
from vtuhub.services.cable import purchase_cable, verify_iuc
from vtuhub.services.daily_data import delivery_logs, purchase_daily_data, user_subscriptions
from vtuhub.services.data import purchase_data
from vtuhub.services.electricity import purchase_electricity, verify_meter
from vtuhub.services.exam import purchase_exam_pin
from vtuhub.services.pins import purchase_data_pin, purchase_recharge_pin
from vtuhub.utils import idempotency

purchases_bp = Blueprint("purchases_bp", __name__, url_prefix="/api/vtu")

_INIT = False


@purchases_bp.before_app_request
def _ensure_tables_once():
    global _INIT
    if _INIT:
        return
    db.create_all()
    _INIT = True


def _receipt_status(receipt) -> int:
    if receipt.status == "success":
        return 200
    if receipt.status in ("processing", "pending"):
        return 202
    if receipt.reason == "validation":
        return 400
    return 502


def _idempotent(user, route: str, payload: dict, fn):
    """Run `fn() -> (body, status)` once per Idempotency-Key header."""
    c = idempotency.claim(int(user.id), route, payload)
    if c is not None and c.replay is not None:
        return jsonify(c.replay[0]), c.replay[1]

    try:
        body, status = fn()
    except VtuError as e:
        db.session.rollback()
        body, status = e.to_dict(), e.http_status
    except Exception:
        db.session.rollback()
        if c is not None:
            idempotency.release(c)
        raise

    if c is not None:
        if status >= 500:
            # 5xx replies are not cached; the same key may retry
            idempotency.release(c)
        else:
            idempotency.record(c, body, status)
    return jsonify(body), status


def _purchase(route: str, call):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}

    def _run():
        receipt = call(u, data)
        return receipt.to_dict(), _receipt_status(receipt)

    return _idempotent(u, route, data, _run)


@purchases_bp.post("/airtime")
def buy_airtime():
    return _purchase("airtime", lambda u, d: purchase_airtime(
        u, d.get("network"), d.get("phone"), d.get("amount"), d.get("airtime_type") or "vtu",
    ))


@purchases_bp.post("/data")
def buy_data():
    return _purchase("data", lambda u, d: purchase_data(u, d.get("network"), d.get("phone"), d.get("plan_code")))


@purchases_bp.post("/cable")
def buy_cable():
    return _purchase("cable", lambda u, d: purchase_cable(
        u, d.get("provider_id"), d.get("plan_code"), d.get("iuc"), d.get("phone"), d.get("amount"),
    ))


@purchases_bp.post("/electricity")
def buy_electricity():
    return _purchase("electricity", lambda u, d: purchase_electricity(
        u, d.get("disco_id"), d.get("meter_number"), d.get("amount"), d.get("meter_type"), d.get("phone"),
    ))


@purchases_bp.post("/exam")
def buy_exam_pin():
    return _purchase("exam", lambda u, d: purchase_exam_pin(u, d.get("exam"), d.get("quantity") or 1))


@purchases_bp.post("/recharge-pin")
def buy_recharge_pin():
    return _purchase("recharge_pin", lambda u, d: purchase_recharge_pin(
        u, d.get("network"), d.get("denomination"), d.get("quantity") or 1, d.get("name_on_card") or "",
    ))


@purchases_bp.post("/data-pin")
def buy_data_pin():
    return _purchase("data_pin", lambda u, d: purchase_data_pin(
        u, d.get("network"), d.get("plan_code"), d.get("quantity") or 1, d.get("name_on_card") or "",
    ))


@purchases_bp.post("/cable/verify")
def cable_verify():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    return jsonify({"ok": True, **verify_iuc(data.get("provider_id"), data.get("iuc"))}), 200


@purchases_bp.post("/electricity/verify")
def meter_verify():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    return jsonify({"ok": True, **verify_meter(data.get("disco_id"), data.get("meter_number"), data.get("meter_type"))}), 200


@purchases_bp.post("/daily-data")
def buy_daily_data():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}

    def _run():
        body = purchase_daily_data(
            u,
            data.get("network"),
            data.get("phone"),
            data.get("plan_code"),
            data.get("total_days"),
            data.get("price_per_day"),
        )
        return body, 201

    return _idempotent(u, "daily_data", data, _run)


@purchases_bp.get("/daily-data")
def my_daily_data():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "items": [s.to_dict() for s in user_subscriptions(int(u.id))]}), 200


@purchases_bp.get("/daily-data/<int:plan_id>/deliveries")
def my_delivery_logs(plan_id: int):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    sub = DailyDataPlan.query.filter_by(id=plan_id, user_id=int(u.id)).first()
    if not sub:
        return jsonify({"message": "Not found"}), 404
    rows = delivery_logs(plan_id=plan_id)
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@purchases_bp.get("/transactions")
def my_transactions():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    q = VtuTransaction.query.filter_by(user_id=int(u.id))
    service = (request.args.get("service") or "").strip()
    if service:
        q = q.filter_by(service=service)
    try:
        limit = min(max(int(request.args.get("limit") or 50), 1), 200)
    except ValueError:
        limit = 50
    rows = q.order_by(VtuTransaction.created_at.desc(), VtuTransaction.id.desc()).limit(limit).all()
    return jsonify({"ok": True, "items": [t.to_dict() for t in rows]}), 200


@purchases_bp.get("/transactions/<reference>")
def transaction_detail(reference: str):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    txn = VtuTransaction.query.filter_by(reference=reference, user_id=int(u.id)).first()
    if not txn:
        return jsonify({"message": "Not found"}), 404
    pins = IssuedPin.query.filter_by(transaction_reference=txn.reference).order_by(IssuedPin.id.asc()).all()
    return jsonify({"ok": True, "transaction": txn.to_dict(), "pins": [p.to_dict() for p in pins]}), 200
