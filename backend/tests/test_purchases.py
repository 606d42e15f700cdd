from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from conftest import fake_response, wallet_balance
from vtuhub.errors import InsufficientFunds, PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.jobs.wallet_reconciler import flag_stale_processing
from vtuhub.models import AuditLog, IssuedPin, Notification, VtuTransaction
from vtuhub.services.airtime import purchase_airtime
from vtuhub.services.cable import purchase_cable, verify_iuc
from vtuhub.services.data import purchase_data
from vtuhub.services.electricity import purchase_electricity
from vtuhub.services.exam import purchase_exam_pin
from vtuhub.services.pins import purchase_data_pin, purchase_recharge_pin
from vtuhub.services import purchases
from vtuhub.services.purchases import resolve_processing
from vtuhub.utils.wallets import get_or_create_wallet

PHONE = "08031234567"


def test_airtime_insufficient_balance_never_calls_provider(catalog, make_user, provider):
    u = make_user("100")
    with pytest.raises(InsufficientFunds) as exc:
        purchase_airtime(u, 1, PHONE, "200")
    assert exc.value.required == Decimal("196.00")
    provider.assert_not_called()
    assert wallet_balance(u.id) == Decimal("100")
    assert VtuTransaction.query.filter_by(user_id=u.id, service="airtime").count() == 0


def test_airtime_success_charges_discounted_amount(catalog, make_user, provider):
    u = make_user("1000")
    receipt = purchase_airtime(u, "MTN", "+2348031234567", "200")
    assert receipt.status == "success"
    assert receipt.amount == "196.00"
    assert wallet_balance(u.id) == Decimal("804")
    _, kwargs = provider.call_args
    assert kwargs["json"]["mobile_number"] == PHONE
    assert kwargs["json"]["amount"] == 200

    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    assert Decimal(txn.profit) == Decimal("4")
    assert txn.meta_dict()["route"] == "airtime"


@pytest.mark.parametrize("amount", ["49", "50001", "abc"])
def test_airtime_amount_bounds(catalog, make_user, provider, amount):
    u = make_user("100000")
    with pytest.raises(ValidationError):
        purchase_airtime(u, 1, PHONE, amount)
    provider.assert_not_called()


def test_invalid_phone_is_rejected(catalog, make_user, provider):
    u = make_user("1000")
    with pytest.raises(ValidationError):
        purchase_airtime(u, 1, "0803123", "100")


def test_data_success_records_balances(catalog, make_user, provider):
    u = make_user("1000")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.status == "success"
    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    assert Decimal(txn.balance_before) == Decimal("1000")
    assert Decimal(txn.balance_after) == Decimal("750")
    assert wallet_balance(u.id) == Decimal("750")
    # MTN SME is routed to its own provider
    assert provider.call_args[1]["headers"]["Authorization"] == "Token sme-key"


def test_data_tier_pricing(catalog, make_user, provider):
    u = make_user("1000", tier="vendor")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.amount == "240.00"
    assert wallet_balance(u.id) == Decimal("760")


def test_data_plan_must_match_network(catalog, make_user, provider):
    u = make_user("1000")
    with pytest.raises(ValidationError):
        purchase_data(u, 2, PHONE, "MTN-SME-1GB")


def test_data_processing_keeps_balance(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"status": "pending", "message": "Request queued"})
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.status == "processing"
    assert receipt.ok
    assert wallet_balance(u.id) == Decimal("1000")


def test_data_failure_leaves_balance(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"status": "failed", "message": "Invalid plan"})
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.status == "failed"
    assert receipt.message == "Invalid plan"
    assert wallet_balance(u.id) == Decimal("1000")


def test_duplicate_inflight_purchase_is_not_resubmitted(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"status": "processing"})
    first = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    second = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert second.duplicate
    assert second.reference == first.reference
    assert provider.call_count == 1


def test_cable_amount_mismatch(catalog, make_user, provider):
    u = make_user("5000")
    with pytest.raises(ValidationError) as exc:
        purchase_cable(u, 2, "dstv-padi", "1234567890", PHONE, "2500")
    assert exc.value.to_dict()["expected"] == "2950.00"
    provider.assert_not_called()


def test_cable_purchase(catalog, make_user, provider):
    u = make_user("5000")
    receipt = purchase_cable(u, "DSTV", "dstv-padi", "1234567890", PHONE, "2950")
    assert receipt.status == "success"
    assert wallet_balance(u.id) == Decimal("2050")


def test_verify_iuc_invalid_message(app, provider):
    provider.return_value = fake_response(403, {"error": "Invalid IUC number"})
    with pytest.raises(ValidationError) as exc:
        verify_iuc(1, "1234567890")
    assert exc.value.message == "Invalid IUC number. Please check and try again"


def test_electricity_token_is_returned(catalog, make_user, provider):
    u = make_user("5000")
    provider.return_value = fake_response(200, {"status": "success", "token": "Token: 1234-5678", "units": "12.5"})
    receipt = purchase_electricity(u, "IE", "45012345678", "1000", "prepaid", PHONE)
    assert receipt.status == "success"
    assert receipt.extras["token"] == "1234-5678"
    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    assert txn.meta_dict()["token"] == "1234-5678"
    assert Decimal(txn.profit) == Decimal("10")
    assert wallet_balance(u.id) == Decimal("4000")


def test_electricity_below_minimum(catalog, make_user, provider):
    u = make_user("5000")
    with pytest.raises(ValidationError):
        purchase_electricity(u, 1, "45012345678", "100", "prepaid", PHONE)


def test_exam_pins_are_saved(catalog, make_user, provider):
    u = make_user("10000")
    provider.return_value = fake_response(200, {"status": "success", "pins": ["1111-2222", "3333-4444"]})
    receipt = purchase_exam_pin(u, "WAEC", 2)
    assert receipt.status == "success"
    assert wallet_balance(u.id) == Decimal("3000")
    pins = IssuedPin.query.filter_by(transaction_reference=receipt.reference).all()
    assert sorted(p.pin for p in pins) == ["1111-2222", "3333-4444"]
    assert Notification.query.filter_by(user_id=u.id, event_type="exam_pin").count() == 1


def test_exam_quantity_limit(catalog, make_user, provider):
    u = make_user("100000")
    with pytest.raises(ValidationError):
        purchase_exam_pin(u, "waec", 6)


def test_exam_without_pins_is_failed(catalog, make_user, provider):
    u = make_user("10000")
    receipt = purchase_exam_pin(u, "waec", 1)
    assert receipt.status == "failed"
    assert IssuedPin.query.count() == 0
    assert wallet_balance(u.id) == Decimal("10000")


def test_recharge_and_data_pins(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"status": "success", "pins": [{"pin": "9999", "serial": "S1"}]})
    recharge = purchase_recharge_pin(u, 1, "100", 1)
    assert recharge.status == "success"
    data_pin = purchase_data_pin(u, 1, "MTN-SME-1GB", 1)
    assert data_pin.status == "success"
    assert wallet_balance(u.id) == Decimal("646")
    kinds = {p.kind for p in IssuedPin.query.filter_by(user_id=u.id)}
    assert kinds == {"card_pin", "data_pin"}


def test_notification_failure_does_not_undo_purchase(app, catalog, make_user, provider):
    def boom(*args):
        raise RuntimeError("smtp down")

    app.config["NOTIFICATION_SENDER"] = boom
    u = make_user("1000")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.status == "success"
    assert wallet_balance(u.id) == Decimal("750")


def test_resolve_processing_success(catalog, make_user, provider):
    admin = make_user(role="admin")
    u = make_user("1000")
    provider.side_effect = requests.exceptions.ReadTimeout("slow")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    assert receipt.status == "processing"

    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    resolved = resolve_processing(txn.id, "success", actor_user_id=admin.id, note="confirmed with provider")
    assert resolved.status == "success"
    assert Decimal(resolved.profit) == Decimal("20")
    assert wallet_balance(u.id) == Decimal("750")
    assert AuditLog.query.filter_by(action="manual_resolve", target_id=txn.id).count() == 1

    with pytest.raises(ValidationError):
        resolve_processing(txn.id, "failed")


def test_resolve_processing_rejects_processing_outcome(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(504, "")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    with pytest.raises(ValidationError):
        resolve_processing(txn.id, "processing")


def test_finalize_failure_parks_purchase_as_processing(catalog, make_user, provider, monkeypatch):
    real_finalize = purchases.finalize
    calls = []

    def finalize_once_broken(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise PersistenceError()
        return real_finalize(*args, **kwargs)

    monkeypatch.setattr("vtuhub.services.purchases.finalize", finalize_once_broken)
    u = make_user("1000")
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-1GB")

    assert receipt.status == "processing"
    assert receipt.reason == "finalize_failed"
    assert provider.call_count == 1
    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    assert txn.meta_dict()["provider_outcome"] == "success"
    assert Decimal(get_or_create_wallet(u.id).reserved_balance) == Decimal("250")

    resolve_processing(txn.id, "success")
    assert wallet_balance(u.id) == Decimal("750")
    assert Decimal(get_or_create_wallet(u.id).reserved_balance) == 0


def test_stuck_pending_row_is_flagged_then_released(catalog, make_user, provider, monkeypatch):
    monkeypatch.setattr("vtuhub.services.purchases.finalize", Mock(side_effect=PersistenceError()))
    u = make_user("1000")
    with pytest.raises(PersistenceError):
        purchase_data(u, 1, PHONE, "MTN-SME-1GB")
    monkeypatch.undo()

    txn = VtuTransaction.query.filter_by(user_id=u.id, service="data").one()
    assert txn.status == "pending"
    assert flag_stale_processing()["stale"] == 0
    with pytest.raises(ValidationError):
        resolve_processing(txn.id, "failed")

    txn.created_at = datetime.utcnow() - timedelta(days=2)
    db.session.commit()
    assert flag_stale_processing()["references"] == [txn.reference]

    resolved = resolve_processing(txn.id, "failed")
    assert resolved.status == "failed"
    w = get_or_create_wallet(u.id)
    db.session.refresh(w)
    assert Decimal(w.balance) == Decimal("1000")
    assert Decimal(w.reserved_balance) == 0


# HTTP surface


def test_purchase_requires_auth(client, catalog):
    resp = client.post("/api/vtu/data", json={"network": 1, "phone": PHONE, "plan_code": "MTN-SME-1GB"})
    assert resp.status_code == 401


def test_http_insufficient_funds(client, catalog, make_user, auth_header, provider):
    u = make_user("100")
    resp = client.post("/api/vtu/airtime", json={"network": 1, "phone": PHONE, "amount": 200}, headers=auth_header(u))
    assert resp.status_code == 402
    body = resp.get_json()
    assert body["ok"] is False
    assert body["required"] == "196.00"


def test_http_status_codes(client, catalog, make_user, auth_header, provider):
    u = make_user("5000")
    headers = auth_header(u)
    ok = client.post("/api/vtu/data", json={"network": 1, "phone": PHONE, "plan_code": "MTN-SME-1GB"}, headers=headers)
    assert ok.status_code == 200
    assert ok.get_json()["balance"] == "4750.00"

    provider.return_value = fake_response(200, {"status": "pending"})
    pending = client.post("/api/vtu/data", json={"network": 1, "phone": "08031234568", "plan_code": "MTN-SME-1GB"}, headers=headers)
    assert pending.status_code == 202

    provider.return_value = fake_response(400, {"meter_number": ["Meter not found"]})
    invalid = client.post(
        "/api/vtu/electricity",
        json={"disco_id": 1, "meter_number": "45012345678", "amount": 1000, "meter_type": "prepaid", "phone": PHONE},
        headers=headers,
    )
    assert invalid.status_code == 400
    assert invalid.get_json()["errors"] == ["meter_number: Meter not found"]

    provider.return_value = fake_response(500, {"message": "down"})
    failed = client.post("/api/vtu/airtime", json={"network": 1, "phone": PHONE, "amount": 100}, headers=headers)
    assert failed.status_code == 502


def test_http_idempotency_key_replays(client, catalog, make_user, auth_header, provider):
    u = make_user("1000")
    headers = {**auth_header(u), "Idempotency-Key": "abc-123"}
    payload = {"network": 1, "phone": PHONE, "plan_code": "MTN-SME-1GB"}
    first = client.post("/api/vtu/data", json=payload, headers=headers)
    second = client.post("/api/vtu/data", json=payload, headers=headers)
    assert first.status_code == second.status_code == 200
    assert first.get_json()["reference"] == second.get_json()["reference"]
    assert provider.call_count == 1
    assert wallet_balance(u.id) == Decimal("750")

    other = client.post("/api/vtu/data", json={**payload, "phone": "08031234568"}, headers=headers)
    assert other.status_code == 409


def test_http_transaction_detail_includes_pins(client, catalog, make_user, auth_header, provider):
    u = make_user("10000")
    provider.return_value = fake_response(200, {"status": "success", "pins": ["5555"]})
    resp = client.post("/api/vtu/exam", json={"exam": "waec", "quantity": 1}, headers=auth_header(u))
    reference = resp.get_json()["reference"]
    detail = client.get(f"/api/vtu/transactions/{reference}", headers=auth_header(u))
    assert detail.status_code == 200
    assert [p["pin"] for p in detail.get_json()["pins"]] == ["5555"]

    stranger = make_user()
    assert client.get(f"/api/vtu/transactions/{reference}", headers=auth_header(stranger)).status_code == 404


def test_purchase_over_balance_leaves_everything_untouched(catalog, make_user, provider):
    u = make_user("1000")
    with pytest.raises(InsufficientFunds):
        purchase_cable(u, 2, "dstv-padi", "1234567890", PHONE, "2950")
    assert wallet_balance(u.id) == Decimal("1000")
    assert VtuTransaction.query.filter_by(user_id=u.id, service="cable").count() == 0
    provider.assert_not_called()


def test_capitalised_status_key_success_debits(catalog, make_user, provider):
    u = make_user("1000")
    provider.return_value = fake_response(200, {"Status": "Successful"})
    receipt = purchase_data(u, 1, PHONE, "MTN-SME-2GB")
    assert receipt.status == "success"
    assert wallet_balance(u.id) == Decimal("500")
    txn = VtuTransaction.query.filter_by(reference=receipt.reference).one()
    assert Decimal(txn.profit) == Decimal("40")


def test_http_idempotency_key_is_freed_after_unexpected_error(client, catalog, make_user, auth_header, provider, monkeypatch):
    u = make_user("1000")
    headers = {**auth_header(u), "Idempotency-Key": "boom-1"}
    payload = {"network": 1, "phone": PHONE, "plan_code": "MTN-SME-1GB"}

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("vtuhub.segments.segment_purchases.purchase_data", broken)
    with pytest.raises(RuntimeError):
        client.post("/api/vtu/data", json=payload, headers=headers)
    monkeypatch.undo()

    retry = client.post("/api/vtu/data", json=payload, headers=headers)
    assert retry.status_code == 200
    assert wallet_balance(u.id) == Decimal("750")
