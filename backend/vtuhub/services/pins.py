from __future__ import annotations

from vtuhub.errors import ValidationError
from vtuhub.extensions import db
from vtuhub.models import IssuedPin, PinProduct, User
from vtuhub.providers.registry import get_registry
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import ZERO, to_money
from vtuhub.utils.networks import network_name, resolve_network
from vtuhub.utils.wallets import make_reference

MAX_PIN_QUANTITY = 50


def parse_quantity(value, maximum: int) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid quantity")
    if qty < 1 or qty > maximum:
        raise ValidationError(f"Quantity must be between 1 and {maximum}")
    return qty


def pin_saver(kind: str):
    """on_success hook: keep returned PINs for reprint, in the debit's DB transaction."""
    def _save(txn, result):
        for p in result.extras.get("pins") or []:
            db.session.add(IssuedPin(
                user_id=txn.user_id,
                transaction_reference=txn.reference,
                kind=kind,
                pin=p["pin"][:120],
                serial=(p.get("serial") or "")[:120] or None,
            ))
    return _save


def _purchase_pin(user: User, product: PinProduct, quantity: int, name_on_card: str, *, service: str, prefix: str) -> PurchaseReceipt:
    unit = to_money(product.price_for(user.pricing_tier))
    if unit <= ZERO:
        raise ValidationError("Product is not available for your account")

    route = get_registry().resolve(product.kind)
    reference = make_reference(prefix)
    payload = {
        "network": product.network_id,
        "plan_type": product.product_code,
        "quantity": quantity,
        "card_name": (name_on_card or "")[:40],
        "ref": reference,
    }
    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service=product.kind,
        amount=unit * quantity,
        cost=to_money(product.cost_price) * quantity,
        route=route,
        payload=payload,
        reference=reference,
        description=f"{quantity} x {network_name(product.network_id)} {product.name}",
        destination=f"{product.kind}:{product.id}:{quantity}",
        notify_event=service,
        meta={"product_id": product.id, "quantity": quantity},
        on_success=pin_saver(service),
    ))


def purchase_recharge_pin(user: User, network, denomination, quantity, name_on_card: str = "") -> PurchaseReceipt:
    network_id = resolve_network(network)
    qty = parse_quantity(quantity, MAX_PIN_QUANTITY)
    product = PinProduct.query.filter_by(
        kind="recharge_pin", network_id=network_id, product_code=str(denomination or "").strip(), is_active=True,
    ).first()
    if not product:
        raise ValidationError("Unknown recharge card denomination")
    return _purchase_pin(user, product, qty, name_on_card, service="card_pin", prefix="RPIN")


def purchase_data_pin(user: User, network, plan_code, quantity, name_on_card: str = "") -> PurchaseReceipt:
    network_id = resolve_network(network)
    qty = parse_quantity(quantity, MAX_PIN_QUANTITY)
    product = PinProduct.query.filter_by(
        kind="data_pin", network_id=network_id, product_code=str(plan_code or "").strip(), is_active=True,
    ).first()
    if not product:
        raise ValidationError("Unknown data pin plan")
    return _purchase_pin(user, product, qty, name_on_card, service="data_pin", prefix="DPIN")
