from __future__ import annotations

import json
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from vtuhub.extensions import db
from vtuhub.models import AuditLog, VtuTransaction, Wallet
from vtuhub.models.transaction import OPEN_STATUSES
from vtuhub.utils.money import to_money


def _ledger_balance(user_id: int) -> Decimal:
    """Net of every confirmed movement. Opening balance is always zero."""
    total = db.session.query(
        func.coalesce(func.sum(VtuTransaction.balance_after - VtuTransaction.balance_before), 0)
    ).filter(
        VtuTransaction.user_id == int(user_id),
        VtuTransaction.status == "success",
    ).scalar()
    return to_money(total or 0)


def _open_holds(user_id: int) -> Decimal:
    total = db.session.query(func.coalesce(func.sum(VtuTransaction.amount), 0)).filter(
        VtuTransaction.user_id == int(user_id),
        VtuTransaction.status.in_(OPEN_STATUSES),
    ).scalar()
    return to_money(total or 0)


def reconcile_wallets(*, limit: int = 500, tolerance: str = "0.01") -> dict:
    """Detect wallet anomalies (ledger vs stored balance).

    This does NOT auto-correct balances. It logs anomalies into AuditLog so they are visible.
    """
    checked = 0
    anomalies = 0
    now = datetime.utcnow()
    tol = Decimal(tolerance)

    wallets = Wallet.query.order_by(Wallet.id.asc()).limit(int(limit)).all()

    for w in wallets:
        checked += 1
        try:
            computed = _ledger_balance(int(w.user_id))
            holds = _open_holds(int(w.user_id))
            stored = to_money(w.balance)
            reserved = to_money(w.reserved_balance)

            issues = []
            if abs(computed - stored) > tol:
                issues.append("ledger_mismatch")
            if abs(holds - reserved) > tol:
                issues.append("reserved_mismatch")
            if stored < 0:
                issues.append("negative_balance")
            if reserved - stored > tol:
                issues.append("reserved_exceeds_balance")

            if not issues:
                continue

            anomalies += 1
            meta = {
                "issues": issues,
                "wallet_id": int(w.id),
                "user_id": int(w.user_id),
                "computed_balance": str(computed),
                "stored_balance": str(stored),
                "open_holds": str(holds),
                "reserved_balance": str(reserved),
                "at": now.isoformat(),
            }
            db.session.add(AuditLog(
                actor_user_id=None,
                action="wallet_anomaly",
                target_type="wallet",
                target_id=int(w.id),
                meta=json.dumps(meta),
                created_at=now,
            ))
            db.session.commit()
            current_app.logger.warning("wallet anomaly user=%s issues=%s", w.user_id, issues)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("reconcile of wallet %s failed", w.id)

    return {"checked": checked, "anomalies": anomalies}


def flag_stale_processing(*, older_than_minutes: int | None = None, limit: int = 200) -> dict:
    """List held transactions (processing, or pending past the window) for manual follow-up.

    Each is flagged once.
    """
    minutes = int(older_than_minutes or current_app.config.get("STALE_PROCESSING_MINUTES") or 30)
    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=minutes)

    rows = (
        VtuTransaction.query
        .filter(VtuTransaction.status.in_(("pending", "processing")), VtuTransaction.created_at <= cutoff)
        .order_by(VtuTransaction.created_at.asc())
        .limit(int(limit))
        .all()
    )
    already = {
        int(a.target_id)
        for a in AuditLog.query.filter_by(action="stale_processing", target_type="vtu_transaction").all()
        if a.target_id
    }

    flagged = 0
    for txn in rows:
        if int(txn.id) in already:
            continue
        db.session.add(AuditLog(
            actor_user_id=None,
            action="stale_processing",
            target_type="vtu_transaction",
            target_id=int(txn.id),
            meta=json.dumps({"reference": txn.reference, "service": txn.service, "status": txn.status, "amount": str(txn.amount)}),
            created_at=now,
        ))
        flagged += 1
    db.session.commit()

    return {"stale": len(rows), "flagged": flagged, "references": [t.reference for t in rows]}
