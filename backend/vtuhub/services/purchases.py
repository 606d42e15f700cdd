"""Reserve -> provider call -> finalize, shared by every product."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from vtuhub.errors import NotFound, PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.models import AuditLog, VtuTransaction
from vtuhub.providers.gateway import submit
from vtuhub.providers.registry import ProviderRoute
from vtuhub.providers.result import Outcome, ProviderResult
from vtuhub.utils.notify import notify
from vtuhub.utils.wallets import account_lock, finalize, find_inflight_duplicate, get_or_create_wallet, reserve

_DEFAULT_MESSAGES = {
    Outcome.SUCCESS: "Transaction successful",
    Outcome.FAILED: "Transaction failed",
    Outcome.PROCESSING: "Transaction is processing",
}


@dataclass
class PurchaseRequest:
    user_id: int
    service: str
    amount: Decimal
    cost: Decimal
    route: ProviderRoute
    payload: Dict[str, Any]
    reference: str
    description: str
    destination: str
    notify_event: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    # Called with (txn, result) inside the success commit, e.g. to store PINs
    on_success: Optional[Callable[[VtuTransaction, ProviderResult], None]] = None


@dataclass
class PurchaseReceipt:
    status: str
    message: str
    reference: str
    amount: str
    balance: str
    transaction: Dict[str, Any]
    reason: Optional[str] = None
    validation_errors: list = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)
    duplicate: bool = False

    @property
    def ok(self) -> bool:
        return self.status in ("success", "processing")

    def to_dict(self) -> dict:
        d = {
            "ok": self.ok,
            "status": self.status,
            "message": self.message,
            "reference": self.reference,
            "amount": self.amount,
            "balance": self.balance,
            "transaction": self.transaction,
        }
        if self.validation_errors:
            d["errors"] = self.validation_errors
        if self.duplicate:
            d["duplicate"] = True
        d.update(self.extras)
        return d


def _receipt(txn: VtuTransaction, message: str, **kw) -> PurchaseReceipt:
    w = get_or_create_wallet(txn.user_id)
    return PurchaseReceipt(
        status=txn.status,
        message=message,
        reference=txn.reference,
        amount=str(txn.amount),
        balance=str(w.balance),
        transaction=txn.to_dict(),
        **kw,
    )


def run_purchase(req: PurchaseRequest) -> PurchaseReceipt:
    log = current_app.logger
    window = int(current_app.config.get("DUPLICATE_INTAKE_WINDOW_SECONDS") or 0)

    with account_lock(req.user_id):
        dup = find_inflight_duplicate(req.user_id, req.service, req.destination, req.amount, window)
        if dup:
            log.info("purchase %s for user %s matches in-flight %s", req.service, req.user_id, dup.reference)
            return _receipt(dup, "A similar transaction is already in progress", duplicate=True)

        meta = dict(req.meta)
        meta["route"] = req.route.route
        meta["cost"] = str(req.cost)
        txn = reserve(
            req.user_id,
            req.amount,
            service=req.service,
            reference=req.reference,
            description=req.description,
            destination=req.destination,
            provider=req.route.provider,
            meta=meta,
        )
        log.info("purchase %s ref=%s user=%s amount=%s reserved", req.service, req.reference, req.user_id, req.amount)
        held_id = int(txn.id)

        result = submit(req.route, req.payload, reference=req.reference)

        on_success = (lambda t: req.on_success(t, result)) if req.on_success else None

        extra_meta = {"reason": result.reason} if result.reason else {}
        for key in ("token", "units"):
            if result.extras.get(key):
                extra_meta[key] = result.extras[key]

        try:
            txn = finalize(
                held_id,
                result.outcome,
                http_code=result.http_code,
                raw_response=result.raw_body,
                cost=req.cost,
                message=result.message,
                extra_meta=extra_meta,
                on_success=on_success,
            )
        except PersistenceError:
            log.error("purchase %s ref=%s provider said %s but finalize failed", req.service, req.reference, result.outcome.value)
            txn = _park_unsettled(held_id, result)
            result = ProviderResult(
                outcome=Outcome.PROCESSING,
                http_code=result.http_code,
                raw_body=result.raw_body,
                message=_DEFAULT_MESSAGES[Outcome.PROCESSING],
                reason="finalize_failed",
            )

    message = result.message or _DEFAULT_MESSAGES[result.outcome]
    log.info("purchase %s ref=%s finalized status=%s", req.service, req.reference, txn.status)

    notify(req.user_id, req.notify_event or req.service, {
        "reference": txn.reference,
        "status": txn.status,
        "amount": str(txn.amount),
        "destination": req.destination,
    })

    return _receipt(
        txn,
        message,
        reason=result.reason,
        validation_errors=list(result.validation_errors),
        extras=dict(result.extras),
    )


def _park_unsettled(txn_id: int, result: ProviderResult) -> VtuTransaction:
    """Leave the hold in place as processing so it can be settled by hand.

    If this write fails too the row stays pending; `flag_stale_processing`
    reports it and `resolve_processing` accepts it once it is stale.
    """
    return finalize(
        txn_id,
        Outcome.PROCESSING,
        http_code=result.http_code,
        raw_response=result.raw_body,
        extra_meta={"reason": "finalize_failed", "provider_outcome": result.outcome.value},
    )


def _stale_cutoff() -> datetime:
    minutes = int(current_app.config.get("STALE_PROCESSING_MINUTES") or 30)
    return datetime.utcnow() - timedelta(minutes=minutes)


def resolve_processing(txn_id: int, outcome: str, *, actor_user_id: int | None = None, note: str = "") -> VtuTransaction:
    """Manual settlement of a transaction stuck in processing.

    Pending rows are accepted only once they are older than the stale window;
    a younger pending row may still be in flight.
    """
    try:
        verdict = Outcome(outcome)
    except ValueError:
        raise ValidationError("outcome must be success or failed")
    if verdict is Outcome.PROCESSING:
        raise ValidationError("outcome must be success or failed")

    txn = db.session.get(VtuTransaction, int(txn_id))
    if not txn:
        raise NotFound("Transaction not found")
    if txn.status == "pending":
        if txn.created_at is None or txn.created_at > _stale_cutoff():
            raise ValidationError("Transaction is pending and may still be in flight")
    elif txn.status != "processing":
        raise ValidationError(f"Transaction is {txn.status}, not processing")

    with account_lock(txn.user_id):
        cost = txn.meta_dict().get("cost")
        txn = finalize(
            txn.id,
            verdict,
            cost=cost,
            message=note or f"Resolved manually as {verdict.value}",
            extra_meta={"resolved_by": actor_user_id},
        )
        try:
            db.session.add(AuditLog(
                actor_user_id=actor_user_id,
                action="manual_resolve",
                target_type="vtu_transaction",
                target_id=int(txn.id),
                meta=json.dumps({"reference": txn.reference, "outcome": verdict.value, "note": note}),
            ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("audit log for manual resolve of %s failed", txn.reference)
            raise PersistenceError()

    notify(txn.user_id, txn.service, {"reference": txn.reference, "status": txn.status, "amount": str(txn.amount)})
    return txn
