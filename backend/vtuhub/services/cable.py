from __future__ import annotations

import re

from vtuhub.errors import ValidationError
from vtuhub.models import CablePlan, User
from vtuhub.providers.gateway import lookup_customer
from vtuhub.providers.registry import get_registry
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import to_money
from vtuhub.utils.networks import normalize_phone
from vtuhub.utils.wallets import make_reference

CABLE_PROVIDERS = {1: "GOTV", 2: "DSTV", 3: "STARTIMES"}

_IUC_RE = re.compile(r"^\d{8,12}$")


def _iuc(value) -> str:
    iuc = re.sub(r"\s", "", str(value or ""))
    if not _IUC_RE.match(iuc):
        raise ValidationError("Invalid IUC / smartcard number")
    return iuc


def _provider_id(value) -> int:
    try:
        pid = int(value)
    except (TypeError, ValueError):
        pid = next((k for k, v in CABLE_PROVIDERS.items() if v.lower() == str(value or "").strip().lower()), 0)
    if pid not in CABLE_PROVIDERS:
        raise ValidationError("Unknown cable provider")
    return pid


def verify_iuc(provider_id, iuc) -> dict:
    pid = _provider_id(provider_id)
    iuc = _iuc(iuc)
    route = get_registry().resolve("cable_verify")
    result = lookup_customer(route, {"smart_card_number": iuc, "iuc": iuc, "cablename": CABLE_PROVIDERS[pid], "cable": pid})
    if not result.ok:
        message = result.message or "Verification failed"
        if result.http_code == 403 and "invalid iuc" in (result.raw_body or "").lower():
            message = "Invalid IUC number. Please check and try again"
        raise ValidationError(message)
    return {"customer_name": result.extras["customer_name"], "iuc": iuc, "provider": CABLE_PROVIDERS[pid]}


def purchase_cable(user: User, provider_id, plan_code, iuc, phone, amount) -> PurchaseReceipt:
    pid = _provider_id(provider_id)
    iuc = _iuc(iuc)
    phone = normalize_phone(phone)
    plan = CablePlan.query.filter_by(plan_code=str(plan_code or "").strip(), provider_id=pid, is_active=True).first()
    if not plan:
        raise ValidationError("Unknown cable plan")

    price = to_money(plan.price_for(user.pricing_tier))
    try:
        submitted = to_money(amount)
    except ValueError:
        raise ValidationError("Invalid amount")
    # The client must quote the current price; no silent correction.
    if submitted != price:
        raise ValidationError("Amount mismatch", expected=str(price))

    route = get_registry().resolve("cable")
    reference = make_reference("CABLE")
    payload = {
        "cable": pid,
        "cablename": CABLE_PROVIDERS[pid],
        "iuc": iuc,
        "smart_card_number": iuc,
        "cable_plan": plan.plan_code,
        "bypass": False,
        "phone": phone,
        "request-id": reference,
        "ref": reference,
    }
    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service="cable",
        amount=price,
        cost=to_money(plan.cost_price),
        route=route,
        payload=payload,
        reference=reference,
        description=f"{CABLE_PROVIDERS[pid]} {plan.name} for {iuc}",
        destination=iuc,
        meta={"provider_id": pid, "plan_code": plan.plan_code, "phone": phone},
    ))
