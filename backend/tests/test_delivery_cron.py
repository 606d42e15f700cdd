from datetime import datetime, timedelta
from decimal import Decimal

import delivery_cron
from vtuhub.extensions import db
from vtuhub.models import DailyDataPlan, DeliveryLog


def test_cron_runs_due_deliveries(app, catalog, make_user, provider, monkeypatch):
    u = make_user()
    db.session.add(DailyDataPlan(
        user_id=u.id, reference="DD_CRON_1", phone="08031234567", network_id=1,
        plan_code="MTN-SME-1GB", plan_type="sme", price_per_cycle=Decimal("250"),
        total_cycles=2, remaining_cycles=2, next_delivery_at=datetime.utcnow() - timedelta(minutes=5),
    ))
    db.session.commit()
    monkeypatch.setattr("vtuhub.create_app", lambda: app)

    assert delivery_cron.main() == 0
    assert DeliveryLog.query.filter_by(status="success").count() == 1


def test_cron_exits_nonzero_when_app_cannot_start(monkeypatch):
    def broken():
        raise RuntimeError("bad config")

    monkeypatch.setattr("vtuhub.create_app", broken)
    assert delivery_cron.main() == 1
