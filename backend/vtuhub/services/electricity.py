from __future__ import annotations

import re

from vtuhub.errors import ValidationError
from vtuhub.models import ElectricityDisco, User
from vtuhub.providers.gateway import lookup_customer
from vtuhub.providers.registry import get_registry
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import percent_of, to_money
from vtuhub.utils.networks import normalize_phone
from vtuhub.utils.wallets import make_reference

METER_TYPES = {"prepaid": 1, "postpaid": 2}

_METER_RE = re.compile(r"^\d{6,13}$")


def _meter(value) -> str:
    meter = re.sub(r"\s", "", str(value or ""))
    if not _METER_RE.match(meter):
        raise ValidationError("Invalid meter number")
    return meter


def _meter_type(value) -> str:
    raw = str(value or "").strip().lower()
    if raw in ("1", "prepaid"):
        return "prepaid"
    if raw in ("2", "postpaid"):
        return "postpaid"
    raise ValidationError("meter_type must be prepaid or postpaid")


def _disco(disco_id) -> ElectricityDisco:
    disco = None
    try:
        disco = ElectricityDisco.query.filter_by(id=int(disco_id), is_active=True).first()
    except (TypeError, ValueError):
        pass
    if disco is None:
        disco = ElectricityDisco.query.filter(
            ElectricityDisco.is_active.is_(True),
            ElectricityDisco.abbreviation.ilike(str(disco_id or "").strip()),
        ).first()
    if not disco:
        raise ValidationError("Unknown electricity company")
    return disco


def verify_meter(disco_id, meter_number, meter_type) -> dict:
    disco = _disco(disco_id)
    meter = _meter(meter_number)
    mtype = _meter_type(meter_type)
    route = get_registry().resolve("meter_verify")
    result = lookup_customer(route, {
        "meter_number": meter,
        "disco_name": disco.abbreviation,
        "service_name": disco.service_slug,
        "meter_type": mtype,
        "MeterType": METER_TYPES[mtype],
    })
    if not result.ok:
        raise ValidationError(result.message or "Meter verification failed")
    return {"customer_name": result.extras["customer_name"], "meter_number": meter, "disco": disco.name, "meter_type": mtype}


def purchase_electricity(user: User, disco_id, meter_number, amount, meter_type, phone) -> PurchaseReceipt:
    disco = _disco(disco_id)
    meter = _meter(meter_number)
    mtype = _meter_type(meter_type)
    phone = normalize_phone(phone)
    try:
        amt = to_money(amount)
    except ValueError:
        raise ValidationError("Invalid amount")
    if amt < to_money(disco.min_amount):
        raise ValidationError(f"Minimum amount is {to_money(disco.min_amount)}")

    route = get_registry().resolve("electricity")
    reference = make_reference("ELEC")
    payload = {
        "disco_name": disco.abbreviation,
        "service_name": disco.service_slug,
        "meter_number": meter,
        "meter_type": mtype,
        "MeterType": METER_TYPES[mtype],
        "amount": str(amt),
        "phone": phone,
        "ref": reference,
    }
    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service="electricity",
        amount=amt,
        cost=percent_of(amt, disco.cost_percent),
        route=route,
        payload=payload,
        reference=reference,
        description=f"{disco.name} {mtype} NGN {amt} for {meter}",
        destination=meter,
        meta={"disco_id": disco.id, "meter_type": mtype, "phone": phone},
    ))
