from __future__ import annotations

from vtuhub.errors import ValidationError
from vtuhub.models import DataPlan, User
from vtuhub.providers.registry import get_registry
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import ZERO, to_money
from vtuhub.utils.networks import network_name, network_slug, normalize_phone, normalize_plan_type, resolve_network
from vtuhub.utils.wallets import make_reference


def build_data_payload(network_id: int, phone: str, plan_code: str, reference: str) -> dict:
    return {
        "network": network_id,
        "network_id": network_id,
        "mobile_number": phone,
        "phone": phone,
        "plan": plan_code,
        "plan_id": plan_code,
        "Ported_number": True,
        "ref": reference,
    }


def get_active_plan(plan_code) -> DataPlan:
    plan = DataPlan.query.filter_by(plan_code=str(plan_code or "").strip(), is_active=True).first()
    if not plan:
        raise ValidationError("Unknown data plan")
    return plan


def data_route(network_id: int, plan_type: str):
    return get_registry().resolve("data", network_slug(network_id), normalize_plan_type(plan_type))


def purchase_data(user: User, network, phone, plan_code) -> PurchaseReceipt:
    network_id = resolve_network(network)
    phone = normalize_phone(phone)
    plan = get_active_plan(plan_code)
    if int(plan.network_id) != network_id:
        raise ValidationError("Plan does not belong to the selected network")

    price = to_money(plan.price_for(user.pricing_tier))
    if price <= ZERO:
        raise ValidationError("Plan is not available for your account")

    route = data_route(network_id, plan.plan_type)
    reference = make_reference("DATA")

    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service="data",
        amount=price,
        cost=to_money(plan.cost_price),
        route=route,
        payload=build_data_payload(network_id, phone, plan.plan_code, reference),
        reference=reference,
        description=f"{network_name(network_id)} {plan.name} to {phone}",
        destination=phone,
        meta={"network_id": network_id, "plan_code": plan.plan_code, "plan_type": plan.plan_type},
    ))
