from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from datetime import datetime

from flask import current_app

from vtuhub.extensions import db
from vtuhub.models import DailyDataPlan
from vtuhub.providers.result import Outcome
from vtuhub.services.daily_data import deliver_cycle
from vtuhub.utils.notify import notify


def _now():
    return datetime.utcnow()


@contextmanager
def scheduler_lock(path: str):
    """Exclusive non-blocking file lock. Yields False when another run holds it."""
    folder = os.path.dirname(os.path.abspath(path))
    os.makedirs(folder, exist_ok=True)
    fh = open(path, "a+")
    acquired = True
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        acquired = False
    try:
        yield acquired
    finally:
        if acquired:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        fh.close()


def due_subscriptions(now: datetime, limit: int = 500):
    return (
        DailyDataPlan.query
        .filter(
            DailyDataPlan.status == "active",
            DailyDataPlan.remaining_cycles > 0,
            DailyDataPlan.next_delivery_at <= now,
        )
        .order_by(DailyDataPlan.next_delivery_at.asc(), DailyDataPlan.id.asc())
        .limit(int(limit))
        .all()
    )


def run_daily_deliveries(*, now: datetime | None = None, lock_path: str | None = None, limit: int | None = None) -> dict:
    log = current_app.logger
    path = lock_path or current_app.config["DELIVERY_LOCK_PATH"]
    limit = int(limit or current_app.config.get("DELIVERY_BATCH_LIMIT") or 500)

    with scheduler_lock(path) as acquired:
        if not acquired:
            log.info("daily data run skipped: another run holds %s", path)
            return {"ok": True, "skipped": True, "processed": 0, "delivered": 0, "failed": 0, "processing": 0, "errors": 0}

        now = now or _now()
        rows = due_subscriptions(now, limit)
        log.info("daily data run started: %d due", len(rows))

        processed = delivered = failed = processing = errors = 0
        for sub in rows:
            processed += 1
            try:
                result = deliver_cycle(sub, now=now)
            except Exception:
                errors += 1
                db.session.rollback()
                log.exception("daily data plan %s delivery errored", sub.reference)
                continue

            if result.outcome is Outcome.SUCCESS:
                delivered += 1
                log.info("daily data plan %s delivered, %d left", sub.reference, sub.remaining_cycles)
                notify(sub.user_id, "delivery", {
                    "reference": sub.reference,
                    "status": "delivered",
                    "message": f"Your daily data for {sub.phone} has been delivered. {sub.remaining_cycles} day(s) left.",
                })
            elif result.outcome is Outcome.PROCESSING:
                processing += 1
                log.warning("daily data plan %s delivery ambiguous: %s", sub.reference, result.message)
            else:
                failed += 1
                log.warning("daily data plan %s delivery failed: %s", sub.reference, result.message)

        summary = {
            "ok": True,
            "skipped": False,
            "processed": processed,
            "delivered": delivered,
            "failed": failed,
            "processing": processing,
            "errors": errors,
        }
        log.info("daily data run finished: %s", summary)
        return summary
