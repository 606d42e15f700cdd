"""Same-account work from several threads against a shared file-backed database."""
import threading
import time
from decimal import Decimal

import pytest

from conftest import PROVIDERS, fake_response
from vtuhub import create_app
from vtuhub.errors import InsufficientFunds, ValidationError
from vtuhub.extensions import db
from vtuhub.models import DataPlan, Referral, User, VtuTransaction, Wallet
from vtuhub.services.data import purchase_data
from vtuhub.services.referrals import claim_referral_reward
from vtuhub.utils.wallets import credit, get_or_create_wallet


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key-123456",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'vtu.db'}",
        "VTU_PROVIDERS": PROVIDERS,
        "DELIVERY_LOCK_PATH": str(tmp_path / "delivery-cron.lock"),
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def _seed_user(app, balance):
    with app.app_context():
        db.session.add(DataPlan(plan_code="MTN-SME-1GB", network_id=1, plan_type="sme", name="1GB SME",
                                cost_price=Decimal("230"), user_price=Decimal("250"),
                                agent_price=Decimal("245"), vendor_price=Decimal("240")))
        u = User(name="Racer", email="racer@example.com")
        u.set_password("secret123")
        db.session.add(u)
        db.session.commit()
        get_or_create_wallet(u.id)
        if Decimal(balance) > 0:
            credit(u.id, balance, reference="SEED-RACE")
        return int(u.id)


def _run_together(app, jobs):
    """Start every job at once, each in its own app context; collect results or exceptions."""
    barrier = threading.Barrier(len(jobs))
    results = [None] * len(jobs)

    def worker(i, job):
        with app.app_context():
            barrier.wait()
            try:
                results[i] = job()
            except Exception as e:
                results[i] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, job)) for i, job in enumerate(jobs)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_concurrent_purchases_cannot_overspend(file_app, provider):
    def slow_success(*args, **kwargs):
        time.sleep(0.05)
        return fake_response(200, {"status": "success"})

    provider.side_effect = slow_success
    user_id = _seed_user(file_app, "300")

    def buy(phone):
        return lambda: purchase_data(db.session.get(User, user_id), 1, phone, "MTN-SME-1GB").status

    results = _run_together(file_app, [buy("08031234567"), buy("08031234568")])

    assert sorted(r for r in results if isinstance(r, str)) == ["success"]
    assert sum(isinstance(r, InsufficientFunds) for r in results) == 1
    assert provider.call_count == 1
    with file_app.app_context():
        w = Wallet.query.filter_by(user_id=user_id).one()
        assert Decimal(w.balance) == Decimal("50")
        assert Decimal(w.reserved_balance) == 0
        assert VtuTransaction.query.filter_by(user_id=user_id, service="data").count() == 1


def test_concurrent_referral_claims_pay_once(file_app):
    user_id = _seed_user(file_app, "0")
    with file_app.app_context():
        referee = User(name="Friend", email="friend@example.com")
        referee.set_password("secret123")
        db.session.add(referee)
        db.session.commit()
        ref = Referral(referrer_id=user_id, referee_id=referee.id, reward_amount=Decimal("100"))
        db.session.add(ref)
        db.session.commit()
        ref_id = int(ref.id)

    results = _run_together(file_app, [lambda: claim_referral_reward(user_id, ref_id)] * 3)

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, ValidationError) for r in results) == 2
    with file_app.app_context():
        w = Wallet.query.filter_by(user_id=user_id).one()
        assert Decimal(w.reward_balance) == Decimal("100")
