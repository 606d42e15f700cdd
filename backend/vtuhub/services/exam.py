from __future__ import annotations

from vtuhub.errors import ValidationError
from vtuhub.models import ExamProduct, User
from vtuhub.providers.registry import get_registry
from vtuhub.services.pins import parse_quantity, pin_saver
from vtuhub.services.purchases import PurchaseRequest, PurchaseReceipt, run_purchase
from vtuhub.utils.money import ZERO, to_money
from vtuhub.utils.wallets import make_reference

MAX_EXAM_QUANTITY = 5


def purchase_exam_pin(user: User, exam, quantity) -> PurchaseReceipt:
    qty = parse_quantity(quantity, MAX_EXAM_QUANTITY)
    product = ExamProduct.query.filter_by(code=str(exam or "").strip().lower(), is_active=True).first()
    if not product:
        raise ValidationError("Unknown exam type")
    unit = to_money(product.price_for(user.pricing_tier))
    if unit <= ZERO:
        raise ValidationError("Exam PIN is not available for your account")

    reference = make_reference("EXM")
    return run_purchase(PurchaseRequest(
        user_id=int(user.id),
        service="exam",
        amount=unit * qty,
        cost=to_money(product.cost_price) * qty,
        route=get_registry().resolve("exam"),
        payload={"exam_name": product.provider_exam_id, "exam": product.provider_exam_id, "quantity": qty, "ref": reference},
        reference=reference,
        description=f"{qty} x {product.name} PIN",
        destination=f"exam:{product.code}:{qty}",
        notify_event="exam_pin",
        meta={"exam": product.code, "quantity": qty},
        on_success=pin_saver("exam_pin"),
    ))
