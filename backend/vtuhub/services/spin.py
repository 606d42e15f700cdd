from __future__ import annotations

import math
import random
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from vtuhub.errors import CooldownActive, NotFound, PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.models import DataPlan, SpinReward, SpinWin, User
from vtuhub.providers.gateway import submit
from vtuhub.providers.registry import get_registry
from vtuhub.providers.result import Outcome, ProviderResult
from vtuhub.services.airtime import build_airtime_payload
from vtuhub.services.data import build_data_payload
from vtuhub.utils.networks import network_slug, normalize_phone, normalize_plan_type, resolve_network
from vtuhub.utils.notify import notify
from vtuhub.utils.wallets import account_lock, credit_reward_balance

DEFAULT_REWARDS = (
    # code, name, type, amount, unit, plan_code, weight
    ("NGN_500", "NGN 500 Airtime", "airtime", "500", "NGN", None, "0.5"),
    ("DATA_1GB", "1GB Data", "data", "1", "GB", "MTN-SME-1GB", "0.3"),
    ("NGN_1000", "NGN 1000 Airtime", "airtime", "1000", "NGN", None, "0.2"),
    ("NGN_200", "NGN 200 Airtime", "airtime", "200", "NGN", None, "98.0"),
    ("DATA_2GB", "2GB Data", "data", "2", "GB", "MTN-SME-2GB", "0.5"),
    ("NGN_750", "NGN 750 Airtime", "airtime", "750", "NGN", None, "0.5"),
    ("TRY_AGAIN", "Try Again", "tryagain", "0", None, None, "1.0"),
)

_rng = random.SystemRandom()


def _now():
    return datetime.utcnow()


def _cooldown() -> timedelta:
    return timedelta(seconds=int(current_app.config.get("SPIN_COOLDOWN_SECONDS") or 72 * 3600))


def seed_default_rewards() -> int:
    if SpinReward.query.count():
        return 0
    for code, name, rtype, amount, unit, plan_code, weight in DEFAULT_REWARDS:
        db.session.add(SpinReward(
            code=code,
            name=name,
            reward_type=rtype,
            amount=Decimal(amount),
            unit=unit,
            plan_code=plan_code,
            weight=Decimal(weight),
            is_active=True,
        ))
    db.session.commit()
    return len(DEFAULT_REWARDS)


def weighted_choice(entries, rng=None):
    """Draw r in [0, total) and take the first entry whose running weight reaches r.

    Zero-weight entries are never drawn; the last positive entry absorbs rounding.
    """
    rng = rng or _rng
    weighted = [(e, Decimal(str(e.weight))) for e in entries if e.weight is not None and Decimal(str(e.weight)) > 0]
    if not weighted:
        raise ValidationError("No rewards available")
    total = sum((w for _, w in weighted), Decimal("0"))
    r = Decimal(str(rng.random())) * total
    cumulative = Decimal("0")
    for entry, w in weighted:
        cumulative += w
        if cumulative >= r:
            return entry
    return weighted[-1][0]


def last_spin_at(user_id: int):
    return db.session.query(func.max(SpinWin.spin_at)).filter(SpinWin.user_id == int(user_id)).scalar()


def spin_status(user_id: int, now: datetime | None = None) -> dict:
    now = now or _now()
    last = last_spin_at(user_id)
    if last is None:
        return {"last_spin_at": None, "can_spin_now": True, "next_spin_available": None, "time_until_next_spin": 0}
    nxt = last + _cooldown()
    remaining = max(0, math.ceil((nxt - now).total_seconds()))
    return {
        "last_spin_at": last.isoformat(),
        "can_spin_now": remaining == 0,
        "next_spin_available": nxt.isoformat(),
        "time_until_next_spin": remaining,
    }


def perform_spin(user: User, *, phone=None, network=None, now: datetime | None = None, rng=None) -> SpinWin:
    now = now or _now()
    phone = normalize_phone(phone) if phone else None
    network_id = resolve_network(network) if network else None

    with account_lock(user.id):
        last = last_spin_at(user.id)
        if last is not None and now - last < _cooldown():
            nxt = last + _cooldown()
            raise CooldownActive(math.ceil((nxt - now).total_seconds()), nxt.isoformat())

        entries = SpinReward.query.filter_by(is_active=True).order_by(SpinReward.id.asc()).all()
        reward = weighted_choice(entries, rng)

        win = SpinWin(
            user_id=int(user.id),
            reward_id=reward.id,
            reward_type=reward.reward_type,
            reward_name=reward.name,
            amount=reward.amount,
            unit=reward.unit,
            plan_code=reward.plan_code,
            status="pending",
            spin_at=now,
        )
        win.update_meta(phone=phone, network=network_id)
        try:
            db.session.add(win)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("spin for user %s failed to persist", user.id)
            raise PersistenceError()

    current_app.logger.info("spin user=%s reward=%s win=%s", user.id, reward.code, win.id)
    notify(user.id, "spin_win", {
        "win_id": win.id,
        "reward": reward.name,
        "type": reward.reward_type,
        "message": "Better luck next time!" if reward.reward_type == "tryagain" else f"You won {reward.name}!",
    })
    return win


def _data_plan_for_reward(plan_code: str | None, network_id: int):
    if not plan_code:
        return None
    plan = DataPlan.query.filter_by(plan_code=plan_code, is_active=True).first()
    if plan and int(plan.network_id) == network_id:
        return plan
    if plan:
        # Same bundle on the winner's network
        return DataPlan.query.filter_by(network_id=network_id, name=plan.name, is_active=True).first()
    return None


def _deliver_reward(win: SpinWin, network_id: int, phone: str, reference: str) -> ProviderResult:
    registry = get_registry()
    if win.reward_type == "airtime":
        route = registry.resolve("airtime", network_slug(network_id), "vtu")
        return submit(route, build_airtime_payload(network_id, phone, win.amount, reference), reference=reference)

    plan = _data_plan_for_reward(win.plan_code, network_id)
    if plan is None:
        return ProviderResult(outcome=Outcome.FAILED, message="No matching data plan for this network", reason="validation")
    route = registry.resolve("data", network_slug(network_id), normalize_plan_type(plan.plan_type))
    return submit(route, build_data_payload(network_id, phone, plan.plan_code, reference), reference=reference)


def claim_reward(user: User, win_id, *, phone=None, network=None, now: datetime | None = None) -> SpinWin:
    """Move a win forward. Delivered wins are returned as-is, never re-sent."""
    now = now or _now()
    with account_lock(user.id):
        win = SpinWin.query.filter_by(id=int(win_id), user_id=int(user.id)).with_for_update().first()
        if not win:
            raise NotFound("Reward not found")
        if win.status == "delivered":
            db.session.rollback()
            return win

        meta = win.meta_dict()
        phone = phone or meta.get("phone")
        network = network or meta.get("network")

        if win.reward_type == "tryagain":
            win.advance_to("claimed")
        elif win.reward_type == "cashback":
            credit_reward_balance(user.id, win.amount, commit=False)
            win.advance_to("delivered")
            win.delivered_at = now
            win.update_meta(delivery_status="delivered")
        elif not phone or not network:
            win.advance_to("claimed")
            win.update_meta(delivery_status="pending")
        else:
            phone = normalize_phone(phone)
            network_id = resolve_network(network)
            reference = f"SPIN{win.id}_{now.strftime('%Y%m%d%H%M%S')}"
            win.update_meta(phone=phone, network=network_id, delivery_reference=reference)
            result = _deliver_reward(win, network_id, phone, reference)
            if result.outcome is Outcome.FAILED:
                win.advance_to("claimed")
                win.update_meta(delivery_status="delivery_failed", delivery_error=(result.message or "")[:255])
            else:
                # Processing counts as sent; resending could deliver twice.
                win.advance_to("delivered")
                win.delivered_at = now
                win.update_meta(delivery_status="delivered" if result.ok else "processing")

        try:
            db.session.add(win)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("claim of win %s failed to persist", win_id)
            raise PersistenceError()

    notify(user.id, "spin_claim", {"win_id": win.id, "reward": win.reward_name, "status": win.status})
    return win


def spin_history(user_id: int, limit: int = 50):
    return SpinWin.query.filter_by(user_id=int(user_id)).order_by(SpinWin.spin_at.desc()).limit(int(limit)).all()


def pending_rewards(user_id: int):
    return (
        SpinWin.query
        .filter(
            SpinWin.user_id == int(user_id),
            SpinWin.status.in_(("pending", "claimed")),
            SpinWin.reward_type != "tryagain",
        )
        .order_by(SpinWin.spin_at.desc())
        .all()
    )
