from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import current_app

from vtuhub.extensions import db
from vtuhub.models.notification import Notification

EVENT_TITLES = {
    "airtime": "Airtime Purchase",
    "data": "Data Purchase",
    "cable": "Cable Subscription",
    "electricity": "Electricity Payment",
    "exam_pin": "Exam PIN Purchase",
    "card_pin": "Recharge PIN Purchase",
    "data_pin": "Data PIN Purchase",
    "daily_data": "Daily Data Plan",
    "delivery": "Daily Data Delivered",
    "spin_win": "Spin & Win",
    "spin_claim": "Reward Claimed",
    "wallet_credit": "Wallet Funded",
    "referral_claimed": "Referral Reward",
}


def _message_for(event_type: str, payload: Dict[str, Any]) -> str:
    if payload.get("message"):
        return str(payload["message"])
    status = payload.get("status")
    amount = payload.get("amount")
    if status and amount:
        return f"Your {EVENT_TITLES.get(event_type, event_type).lower()} of NGN {amount} is {status}."
    return EVENT_TITLES.get(event_type, "Notification")


def queue_in_app(user_id: int, event_type: str, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Notification:
    n = Notification(
        user_id=user_id,
        channel="in_app",
        event_type=event_type,
        title=title[:160] if title else "",
        message=message or "",
        status="queued",
        provider="local",
        meta=json.dumps(meta or {}, default=str),
    )
    db.session.add(n)
    return n


def _store_notification(user_id: int, event_type: str, payload: Dict[str, Any]) -> None:
    queue_in_app(user_id, event_type, EVENT_TITLES.get(event_type, "Notification"), _message_for(event_type, payload), payload)
    db.session.commit()


def notify(user_id: int, event_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
    """Best-effort. A failed notification never affects the money path.

    Callers must have committed their own work before calling this.
    """
    sender = current_app.config.get("NOTIFICATION_SENDER") or _store_notification
    try:
        sender(int(user_id), event_type, dict(payload or {}))
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.warning("notification %s for user %s failed", event_type, user_id, exc_info=True)
        return False
