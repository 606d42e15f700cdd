from __future__ import annotations

from decimal import Decimal

from vtuhub.errors import ValidationError
from vtuhub.models import AirtimeRate, User
from vtuhub.providers.registry import get_registry
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import percent_of, to_money
from vtuhub.utils.networks import network_name, network_slug, normalize_phone, resolve_network
from vtuhub.utils.wallets import make_reference

AIRTIME_TYPES = {"vtu": "VTU", "sharesell": "Share and Sell"}

MIN_AIRTIME = Decimal("50.00")
MAX_AIRTIME = Decimal("50000.00")


def quote_airtime(user: User, network_id: int, face, airtime_type: str = "vtu") -> tuple:
    """(amount charged to the wallet, amount the provider takes) for a face value."""
    rate = AirtimeRate.query.filter_by(network_id=int(network_id), airtime_type=airtime_type).first()
    if not rate:
        return to_money(face), to_money(face)
    return percent_of(face, rate.percent_for(user.pricing_tier)), percent_of(face, rate.cost_percent)


def build_airtime_payload(network_id: int, phone: str, amount, reference: str, airtime_type: str = "vtu") -> dict:
    amt = to_money(amount)
    return {
        "network": network_id,
        "network_id": network_id,
        "amount": int(amt) if amt == amt.to_integral_value() else str(amt),
        "mobile_number": phone,
        "phone": phone,
        "Ported_number": True,
        "airtime_type": AIRTIME_TYPES.get(airtime_type, "VTU"),
        "ref": reference,
    }


def purchase_airtime(user: User, network, phone, amount, airtime_type: str = "vtu") -> PurchaseReceipt:
    network_id = resolve_network(network)
    phone = normalize_phone(phone)
    try:
        face = to_money(amount)
    except ValueError:
        raise ValidationError("Invalid amount")
    if face < MIN_AIRTIME or face > MAX_AIRTIME:
        raise ValidationError(f"Airtime amount must be between {MIN_AIRTIME} and {MAX_AIRTIME}")
    atype = str(airtime_type or "vtu").strip().lower().replace(" ", "").replace("_", "")
    if atype not in AIRTIME_TYPES:
        raise ValidationError("airtime_type must be VTU or sharesell")

    charge, cost = quote_airtime(user, network_id, face, atype)
    route = get_registry().resolve("airtime", network_slug(network_id), atype)
    reference = make_reference("AIR")

    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service="airtime",
        amount=charge,
        cost=cost,
        route=route,
        payload=build_airtime_payload(network_id, phone, face, reference, atype),
        reference=reference,
        description=f"{network_name(network_id)} airtime NGN {face} to {phone}",
        destination=phone,
        meta={"network_id": network_id, "face_value": str(face), "airtime_type": atype},
    ))
