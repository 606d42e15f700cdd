"""Daily data plans: paid once, delivered one cycle per day by the scheduler."""
from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from vtuhub.errors import PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.models import DailyDataPlan, DeliveryLog, User
from vtuhub.providers.gateway import submit
from vtuhub.providers.result import Outcome, ProviderResult
from vtuhub.services.data import build_data_payload, data_route, get_active_plan
from vtuhub.utils.money import ZERO, to_money
from vtuhub.utils.networks import network_name, normalize_phone, resolve_network
from vtuhub.utils.notify import notify
from vtuhub.utils.wallets import account_lock, charge, get_or_create_wallet, make_reference

MAX_DAYS = 90


def _now():
    return datetime.utcnow()


def deliver_cycle(sub: DailyDataPlan, *, now: datetime | None = None, commit: bool = True) -> ProviderResult:
    """Attempt one delivery and log it. Only a confirmed success advances the plan."""
    now = now or _now()
    if sub.status != "active" or int(sub.remaining_cycles or 0) <= 0:
        raise ValidationError("Subscription has no remaining deliveries")

    route = data_route(sub.network_id, sub.plan_type)
    ref = f"{sub.reference}_{now.strftime('%Y%m%d%H%M%S')}"
    result = submit(route, build_data_payload(sub.network_id, sub.phone, sub.plan_code, ref), reference=ref)

    db.session.add(DeliveryLog(
        plan_id=sub.id,
        user_id=sub.user_id,
        phone=sub.phone,
        network_id=sub.network_id,
        plan_code=sub.plan_code,
        transaction_ref=ref,
        status=result.outcome.value,
        http_code=result.http_code,
        provider_response=result.raw_body or None,
        error_message=None if result.ok else (result.message or "Delivery failed")[:255],
        created_at=now,
    ))

    if result.outcome is Outcome.SUCCESS:
        sub.remaining_cycles = int(sub.remaining_cycles) - 1
        sub.next_delivery_at = sub.next_delivery_at + timedelta(days=1)
        if sub.remaining_cycles <= 0:
            sub.remaining_cycles = 0
            sub.status = "finished"
        sub.updated_at = now
        db.session.add(sub)

    if commit:
        db.session.commit()
    return result


def purchase_daily_data(user: User, network, phone, plan_code, total_days, price_per_day=None, *, now: datetime | None = None) -> dict:
    now = now or _now()
    network_id = resolve_network(network)
    phone = normalize_phone(phone)
    try:
        days = int(total_days)
    except (TypeError, ValueError):
        raise ValidationError("Invalid number of days")
    if days < 1 or days > MAX_DAYS:
        raise ValidationError(f"Number of days must be between 1 and {MAX_DAYS}")

    plan = get_active_plan(plan_code)
    if int(plan.network_id) != network_id:
        raise ValidationError("Plan does not belong to the selected network")
    price = to_money(plan.price_for(user.pricing_tier))
    if price <= ZERO:
        raise ValidationError("Plan is not available for your account")
    if price_per_day is not None and to_money(price_per_day) != price:
        raise ValidationError("Amount mismatch", expected=str(price))

    # Fail on missing config before any money moves.
    data_route(network_id, plan.plan_type)

    total = price * days
    reference = make_reference("DD")
    with account_lock(user.id):
        charge(
            user.id,
            total,
            service="daily_data",
            reference=reference,
            description=f"{network_name(network_id)} {plan.name} daily for {days} days to {phone}",
            destination=phone,
            cost=to_money(plan.cost_price) * days,
            meta={"plan_code": plan.plan_code, "days": days, "price_per_day": str(price)},
            commit=False,
        )
        sub = DailyDataPlan(
            user_id=int(user.id),
            reference=reference,
            phone=phone,
            network_id=network_id,
            plan_code=plan.plan_code,
            plan_type=plan.plan_type,
            price_per_cycle=price,
            total_cycles=days,
            remaining_cycles=days,
            next_delivery_at=now,
            status="active",
            created_at=now,
            updated_at=now,
        )
        try:
            db.session.add(sub)
            db.session.flush()
            # Uncommitted until after the first attempt, so the scheduler cannot pick it up twice.
            first = deliver_cycle(sub, now=now, commit=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("daily data purchase %s failed to persist", reference)
            raise PersistenceError()

    current_app.logger.info("daily data %s created for user %s, first delivery %s", reference, user.id, first.outcome.value)
    notify(user.id, "daily_data", {
        "reference": reference,
        "status": "success",
        "amount": str(total),
        "message": f"Daily data plan active for {days} days. First delivery: {first.outcome.value}.",
    })
    return {
        "ok": True,
        "status": "success",
        "reference": reference,
        "amount": str(total),
        "balance": str(get_or_create_wallet(user.id).balance),
        "subscription": sub.to_dict(),
        "first_delivery": first.outcome.value,
    }


def user_subscriptions(user_id: int):
    return DailyDataPlan.query.filter_by(user_id=int(user_id)).order_by(DailyDataPlan.created_at.desc()).all()


def delivery_logs(*, user_id: int | None = None, plan_id: int | None = None, status: str | None = None, limit: int = 100):
    q = DeliveryLog.query
    if user_id is not None:
        q = q.filter(DeliveryLog.user_id == int(user_id))
    if plan_id is not None:
        q = q.filter(DeliveryLog.plan_id == int(plan_id))
    if status:
        q = q.filter(DeliveryLog.status == status)
    return q.order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc()).limit(int(limit)).all()
