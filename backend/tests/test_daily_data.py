from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import fake_response, wallet_balance
from vtuhub.errors import InsufficientFunds, ValidationError
from vtuhub.extensions import db
from vtuhub.jobs.daily_data_runner import run_daily_deliveries, scheduler_lock
from vtuhub.models import DailyDataPlan, DeliveryLog, VtuTransaction
from vtuhub.services.daily_data import deliver_cycle, purchase_daily_data

NOW = datetime(2026, 3, 1, 6, 0, 0)
PHONE = "08031234567"


def _subscription(user, remaining=3, next_at=NOW, status="active"):
    sub = DailyDataPlan(
        user_id=user.id,
        reference=f"DD_TEST_{user.id}_{remaining}",
        phone=PHONE,
        network_id=1,
        plan_code="MTN-SME-1GB",
        plan_type="sme",
        price_per_cycle=Decimal("250"),
        total_cycles=5,
        remaining_cycles=remaining,
        next_delivery_at=next_at,
        status=status,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


def test_failed_delivery_changes_nothing_but_the_log(catalog, make_user, provider):
    sub = _subscription(make_user(), remaining=3)
    provider.return_value = fake_response(200, {"status": "failed", "message": "Network busy"})

    summary = run_daily_deliveries(now=NOW)

    assert summary["failed"] == 1
    db.session.refresh(sub)
    assert sub.remaining_cycles == 3
    assert sub.next_delivery_at == NOW
    assert sub.status == "active"
    logs = DeliveryLog.query.filter_by(plan_id=sub.id).all()
    assert [(log.status, log.error_message) for log in logs] == [("failed", "Network busy")]


def test_last_delivery_finishes_subscription(catalog, make_user, provider):
    sub = _subscription(make_user(), remaining=1)

    summary = run_daily_deliveries(now=NOW)

    assert summary["delivered"] == 1
    db.session.refresh(sub)
    assert sub.remaining_cycles == 0
    assert sub.status == "finished"
    assert sub.next_delivery_at == NOW + timedelta(days=1)
    assert DeliveryLog.query.filter_by(plan_id=sub.id, status="success").count() == 1


def test_late_run_advances_from_scheduled_time(catalog, make_user, provider):
    sub = _subscription(make_user(), remaining=3, next_at=NOW)
    run_daily_deliveries(now=NOW + timedelta(hours=5))
    db.session.refresh(sub)
    assert sub.remaining_cycles == 2
    assert sub.next_delivery_at == NOW + timedelta(days=1)


def test_processing_delivery_is_retried_next_run(catalog, make_user, provider):
    sub = _subscription(make_user(), remaining=2)
    provider.return_value = fake_response(504, "")

    summary = run_daily_deliveries(now=NOW)

    assert summary["processing"] == 1
    db.session.refresh(sub)
    assert sub.remaining_cycles == 2
    assert DeliveryLog.query.filter_by(plan_id=sub.id, status="processing").count() == 1


def test_only_due_active_subscriptions_run(catalog, make_user, provider):
    u = make_user()
    _subscription(u, remaining=2, next_at=NOW + timedelta(minutes=1))
    finished = _subscription(make_user(), remaining=0, status="finished")

    summary = run_daily_deliveries(now=NOW)

    assert summary["processed"] == 0
    provider.assert_not_called()
    assert DeliveryLog.query.filter_by(plan_id=finished.id).count() == 0


def test_held_lock_skips_run(app, catalog, make_user, provider):
    _subscription(make_user())
    path = app.config["DELIVERY_LOCK_PATH"]

    with scheduler_lock(path) as acquired:
        assert acquired
        summary = run_daily_deliveries(now=NOW)

    assert summary["skipped"] is True
    provider.assert_not_called()
    assert DeliveryLog.query.count() == 0


def test_delivery_reference_is_per_cycle(catalog, make_user, provider):
    sub = _subscription(make_user())
    deliver_cycle(sub, now=NOW)
    log = DeliveryLog.query.filter_by(plan_id=sub.id).one()
    assert log.transaction_ref == f"{sub.reference}_20260301060000"
    assert provider.call_args[1]["json"]["ref"] == log.transaction_ref


def test_deliver_cycle_refuses_finished_plan(catalog, make_user, provider):
    sub = _subscription(make_user(), remaining=0, status="finished")
    with pytest.raises(ValidationError):
        deliver_cycle(sub, now=NOW)


def test_purchase_charges_up_front_and_delivers_first_day(catalog, make_user, provider):
    u = make_user("1000")

    body = purchase_daily_data(u, "mtn", PHONE, "MTN-SME-1GB", 3, now=NOW)

    assert body["amount"] == "750.00"
    assert body["first_delivery"] == "success"
    assert wallet_balance(u.id) == Decimal("250")
    sub = DailyDataPlan.query.filter_by(reference=body["reference"]).one()
    assert sub.remaining_cycles == 2
    assert sub.next_delivery_at == NOW + timedelta(days=1)
    txn = VtuTransaction.query.filter_by(reference=body["reference"]).one()
    assert txn.service == "daily_data"
    assert txn.status == "success"

    # Next run the same day finds nothing due.
    assert run_daily_deliveries(now=NOW + timedelta(hours=1))["processed"] == 0


def test_purchase_with_failed_first_delivery_stays_due(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"status": "failed"})

    body = purchase_daily_data(u, 1, PHONE, "MTN-SME-1GB", 2, now=NOW)

    assert body["first_delivery"] == "failed"
    assert wallet_balance(u.id) == Decimal("500")
    sub = DailyDataPlan.query.filter_by(reference=body["reference"]).one()
    assert sub.remaining_cycles == 2
    assert sub.next_delivery_at == NOW

    provider.return_value = fake_response(200, {"status": "success"})
    assert run_daily_deliveries(now=NOW + timedelta(minutes=10))["delivered"] == 1


def test_purchase_insufficient_funds_creates_nothing(catalog, make_user, provider):
    u = make_user("300")
    with pytest.raises(InsufficientFunds):
        purchase_daily_data(u, 1, PHONE, "MTN-SME-1GB", 2, now=NOW)
    assert DailyDataPlan.query.count() == 0
    provider.assert_not_called()


@pytest.mark.parametrize("days", [0, 91, "x"])
def test_purchase_day_bounds(catalog, make_user, provider, days):
    u = make_user("100000")
    with pytest.raises(ValidationError):
        purchase_daily_data(u, 1, PHONE, "MTN-SME-1GB", days, now=NOW)


def test_price_per_day_must_match(catalog, make_user, provider):
    u = make_user("1000")
    with pytest.raises(ValidationError) as exc:
        purchase_daily_data(u, 1, PHONE, "MTN-SME-1GB", 2, "200", now=NOW)
    assert exc.value.to_dict()["expected"] == "250.00"


def test_http_subscribe_and_list_deliveries(client, catalog, make_user, auth_header, provider):
    u = make_user("1000")
    headers = auth_header(u)
    resp = client.post(
        "/api/vtu/daily-data",
        json={"network": 1, "phone": PHONE, "plan_code": "MTN-SME-1GB", "total_days": 2},
        headers=headers,
    )
    assert resp.status_code == 201
    plan_id = resp.get_json()["subscription"]["id"]

    listing = client.get("/api/vtu/daily-data", headers=headers)
    assert [s["id"] for s in listing.get_json()["items"]] == [plan_id]

    logs = client.get(f"/api/vtu/daily-data/{plan_id}/deliveries", headers=headers)
    assert [row["status"] for row in logs.get_json()["items"]] == ["success"]

    other = make_user()
    assert client.get(f"/api/vtu/daily-data/{plan_id}/deliveries", headers=auth_header(other)).status_code == 404


def test_admin_can_trigger_run(client, catalog, make_user, auth_header, provider):
    admin = make_user(role="admin")
    _subscription(make_user(), remaining=2, next_at=datetime.utcnow() - timedelta(minutes=1))

    assert client.post("/api/admin/daily-data/run", headers=auth_header(make_user())).status_code == 403
    resp = client.post("/api/admin/daily-data/run", headers=auth_header(admin))
    assert resp.status_code == 200
    assert resp.get_json()["delivered"] == 1
