"""Shared fixtures: in-memory app, seeded catalog, and a scripted provider."""
import json
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from vtuhub import create_app
from vtuhub.extensions import db
from vtuhub.models import (
    AirtimeRate,
    CablePlan,
    DataPlan,
    ElectricityDisco,
    ExamProduct,
    PinProduct,
    User,
)
from vtuhub.utils.tokens import issue_token
from vtuhub.utils.wallets import credit, get_or_create_wallet

PROVIDERS = {
    "providers": {
        "smeplug": {"base_url": "https://smeplug.test/api", "api_key": "sme-key", "auth_scheme": "Token"},
        "alrahuz": {"base_url": "https://alrahuz.test/api", "api_key": "alr-key", "auth_scheme": "Bearer", "timeout": 20},
    },
    "routes": {
        "airtime": {"provider": "alrahuz", "path": "/topup/"},
        "data": {"provider": "alrahuz", "path": "/data/"},
        "data:mtn:sme": {"provider": "smeplug", "path": "/data/"},
        "cable": {"provider": "alrahuz", "path": "/cablesub/"},
        "cable_verify": {"provider": "alrahuz", "path": "/cable/verify", "method": "GET"},
        "electricity": {"provider": "alrahuz", "path": "/billpayment/", "interpreter": "electricity"},
        "meter_verify": {"provider": "alrahuz", "path": "/meter/verify", "method": "GET"},
        "exam": {"provider": "alrahuz", "path": "/epin/", "interpreter": "pins"},
        "recharge_pin": {"provider": "alrahuz", "path": "/rechargepin/", "interpreter": "pins"},
        "data_pin": {"provider": "alrahuz", "path": "/datapin/", "interpreter": "pins"},
    },
}


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key-123456",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "VTU_PROVIDERS": PROVIDERS,
        "DELIVERY_LOCK_PATH": str(tmp_path / "delivery-cron.lock"),
        "DUPLICATE_INTAKE_WINDOW_SECONDS": 60,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog(app):
    db.session.add_all([
        DataPlan(plan_code="MTN-SME-1GB", network_id=1, plan_type="sme", name="1GB SME",
                 cost_price=Decimal("230"), user_price=Decimal("250"), agent_price=Decimal("245"), vendor_price=Decimal("240")),
        DataPlan(plan_code="MTN-SME-2GB", network_id=1, plan_type="sme", name="2GB SME",
                 cost_price=Decimal("460"), user_price=Decimal("500"), agent_price=Decimal("490"), vendor_price=Decimal("480")),
        DataPlan(plan_code="GLO-CG-1GB", network_id=2, plan_type="corporate", name="1GB SME",
                 cost_price=Decimal("220"), user_price=Decimal("240"), agent_price=Decimal("235"), vendor_price=Decimal("230")),
        AirtimeRate(network_id=1, airtime_type="vtu", user_percent=Decimal("98"), agent_percent=Decimal("97"),
                    vendor_percent=Decimal("96.5"), cost_percent=Decimal("96")),
        CablePlan(provider_id=2, provider_name="DSTV", plan_code="dstv-padi", name="DStv Padi",
                  cost_price=Decimal("2900"), user_price=Decimal("2950"), agent_price=Decimal("2930"), vendor_price=Decimal("2920")),
        ElectricityDisco(name="Ikeja Electric", abbreviation="IE", service_slug="ikeja-electric", cost_percent=Decimal("99")),
        ExamProduct(code="waec", name="WAEC Result Checker", provider_exam_id="1",
                    cost_price=Decimal("3300"), user_price=Decimal("3500"), agent_price=Decimal("3450"), vendor_price=Decimal("3400")),
        PinProduct(kind="recharge_pin", network_id=1, product_code="100", name="MTN 100 card",
                   cost_price=Decimal("97"), user_price=Decimal("99"), agent_price=Decimal("98.5"), vendor_price=Decimal("98")),
        PinProduct(kind="data_pin", network_id=1, product_code="MTN-SME-1GB", name="MTN 1GB data pin",
                   cost_price=Decimal("230"), user_price=Decimal("255"), agent_price=Decimal("250"), vendor_price=Decimal("245")),
    ])
    db.session.commit()


_counter = {"n": 0}


@pytest.fixture
def make_user(app):
    def _make(balance="0", tier="subscriber", role="user"):
        _counter["n"] += 1
        n = _counter["n"]
        u = User(name=f"User {n}", email=f"user{n}@example.com", tier=tier, role=role)
        u.set_password("secret123")
        db.session.add(u)
        db.session.commit()
        get_or_create_wallet(u.id)
        if Decimal(balance) > 0:
            credit(u.id, balance, reference=f"SEED-{n}")
        return u
    return _make


@pytest.fixture
def auth_header():
    def _header(user):
        return {"Authorization": f"Bearer {issue_token(user.id)}"}
    return _header


def fake_response(status=200, body=None):
    resp = Mock()
    resp.status_code = status
    if isinstance(body, (dict, list)):
        resp.text = json.dumps(body)
        resp.json.return_value = body
    else:
        resp.text = body or ""
        resp.json.side_effect = ValueError("not json")
    return resp


@pytest.fixture
def provider():
    """Patch the gateway's HTTP call. Set `.return_value` or `.side_effect` per test."""
    with patch("vtuhub.providers.gateway.requests.request") as mocked:
        mocked.return_value = fake_response(200, {"status": "success", "message": "Transaction successful"})
        yield mocked


def wallet_balance(user_id):
    w = get_or_create_wallet(user_id)
    db.session.refresh(w)
    return Decimal(w.balance)
