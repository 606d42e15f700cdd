from __future__ import annotations

import json
import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vtuhub.errors import InsufficientFunds, NotFound, PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.models import VtuTransaction, Wallet
from vtuhub.models.transaction import OPEN_STATUSES
from vtuhub.providers.result import Outcome
from vtuhub.utils.money import ZERO, to_money

_RAW_LIMIT = 4000

_LOCKS: dict = {}
_LOCKS_GUARD = threading.Lock()


def _now():
    return datetime.utcnow()


@contextmanager
def account_lock(user_id: int):
    """Serialize balance-affecting work for one account within this process.

    Cross-process safety comes from the wallet row lock taken in each mutation.
    Re-entrant, so a locked caller may call other locked helpers.
    """
    with _LOCKS_GUARD:
        lock = _LOCKS.setdefault(int(user_id), threading.RLock())
    with lock:
        yield


def make_reference(prefix: str) -> str:
    return f"{prefix}_{_now().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(4).upper()}"


def get_or_create_wallet(user_id: int) -> Wallet:
    w = Wallet.query.filter_by(user_id=user_id).first()
    if w:
        return w
    w = Wallet(user_id=user_id, balance=ZERO, reserved_balance=ZERO, reward_balance=ZERO, currency="NGN")
    try:
        db.session.add(w)
        db.session.commit()
        return w
    except IntegrityError:
        db.session.rollback()
        w = Wallet.query.filter_by(user_id=user_id).first()
        if w:
            return w
        raise


def _locked_wallet(user_id: int) -> Wallet:
    get_or_create_wallet(int(user_id))
    return Wallet.query.filter_by(user_id=int(user_id)).with_for_update().first()


def available_balance(w: Wallet) -> Decimal:
    return to_money(w.balance) - to_money(w.reserved_balance)


def _positive(amount) -> Decimal:
    try:
        amt = to_money(amount)
    except ValueError:
        raise ValidationError("Invalid amount")
    if amt <= ZERO:
        raise ValidationError("Amount must be greater than zero")
    return amt


def _persistence_failure(what: str):
    db.session.rollback()
    current_app.logger.exception("ledger: %s failed", what)
    return PersistenceError()


def reserve(
    user_id: int,
    amount,
    *,
    service: str,
    reference: str,
    description: str = "",
    destination: str | None = None,
    provider: str | None = None,
    meta: dict | None = None,
) -> VtuTransaction:
    """Hold `amount` and write the pending record in one DB transaction.

    Raises InsufficientFunds without writing anything when the available
    balance (balance minus existing holds) is short.
    """
    amt = _positive(amount)
    try:
        w = _locked_wallet(user_id)
        available = available_balance(w)
        if available < amt:
            db.session.rollback()
            raise InsufficientFunds(available, amt)

        balance = to_money(w.balance)
        txn = VtuTransaction(
            user_id=int(user_id),
            reference=reference,
            service=service,
            description=(description or "")[:255],
            destination=(destination or None),
            amount=amt,
            balance_before=balance,
            balance_after=balance,
            status="pending",
            provider=provider,
            meta=json.dumps(meta or {}),
            created_at=_now(),
        )
        w.reserved_balance = to_money(w.reserved_balance) + amt
        w.updated_at = _now()
        db.session.add(txn)
        db.session.add(w)
        db.session.commit()
        return txn
    except SQLAlchemyError:
        raise _persistence_failure("reserve")


def finalize(
    txn_id: int,
    outcome: Outcome,
    *,
    http_code: int | None = None,
    raw_response: str | None = None,
    cost=None,
    message: str | None = None,
    extra_meta: dict | None = None,
    on_success=None,
) -> VtuTransaction:
    """Apply a provider outcome to a held transaction exactly once.

    success/failed records are returned untouched. A processing record may be
    finalized once more when the real outcome is known. `on_success(txn)` runs
    inside the same DB transaction as the debit.
    """
    try:
        txn = VtuTransaction.query.filter_by(id=int(txn_id)).with_for_update().first()
        if not txn:
            raise NotFound("Transaction not found")
        if txn.is_terminal:
            db.session.rollback()
            return txn

        now = _now()
        w = _locked_wallet(txn.user_id)
        amt = to_money(txn.amount)
        reserved = to_money(w.reserved_balance)

        if outcome is Outcome.SUCCESS:
            before = to_money(w.balance)
            w.balance = before - amt
            w.reserved_balance = max(ZERO, reserved - amt)
            txn.balance_before = before
            txn.balance_after = before - amt
            txn.profit = amt - to_money(cost) if cost is not None else ZERO
            txn.status = "success"
            txn.finalized_at = now
        elif outcome is Outcome.FAILED:
            w.reserved_balance = max(ZERO, reserved - amt)
            txn.balance_after = txn.balance_before
            txn.status = "failed"
            txn.finalized_at = now
        else:
            txn.status = "processing"

        if http_code is not None:
            txn.provider_http_code = int(http_code)
        if raw_response:
            txn.provider_response = raw_response[:_RAW_LIMIT]
        meta = txn.meta_dict()
        if message:
            meta["message"] = message[:255]
        if extra_meta:
            meta.update(extra_meta)
        txn.meta = json.dumps(meta)
        w.updated_at = now

        if txn.status == "success" and on_success is not None:
            on_success(txn)

        db.session.add(txn)
        db.session.add(w)
        db.session.commit()
        return txn
    except SQLAlchemyError:
        raise _persistence_failure("finalize")


def _credit_locked(w: Wallet, amt: Decimal, *, service: str, reference: str, description: str, meta: dict | None) -> VtuTransaction:
    before = to_money(w.balance)
    now = _now()
    txn = VtuTransaction(
        user_id=int(w.user_id),
        reference=reference,
        service=service,
        description=(description or "")[:255],
        amount=amt,
        balance_before=before,
        balance_after=before + amt,
        status="success",
        meta=json.dumps(meta or {}),
        created_at=now,
        finalized_at=now,
    )
    w.balance = before + amt
    w.updated_at = now
    db.session.add(txn)
    db.session.add(w)
    return txn


def credit(
    user_id: int,
    amount,
    *,
    service: str = "wallet_credit",
    reference: str | None = None,
    description: str = "Wallet funding",
    meta: dict | None = None,
) -> VtuTransaction:
    """Add funds. Idempotent per reference: a repeated reference returns the first record."""
    amt = _positive(amount)
    reference = reference or make_reference("CRD")
    with account_lock(user_id):
        existing = VtuTransaction.query.filter_by(reference=reference).first()
        if existing:
            return existing
        try:
            w = _locked_wallet(user_id)
            txn = _credit_locked(w, amt, service=service, reference=reference, description=description, meta=meta)
            db.session.commit()
            return txn
        except IntegrityError:
            db.session.rollback()
            existing = VtuTransaction.query.filter_by(reference=reference).first()
            if existing:
                return existing
            raise _persistence_failure("credit")
        except SQLAlchemyError:
            raise _persistence_failure("credit")


def charge(
    user_id: int,
    amount,
    *,
    service: str,
    reference: str,
    description: str = "",
    destination: str | None = None,
    cost=None,
    meta: dict | None = None,
    commit: bool = True,
) -> VtuTransaction:
    """Immediate confirmed debit for goods paid up front (no provider round-trip)."""
    amt = _positive(amount)
    try:
        w = _locked_wallet(user_id)
        available = available_balance(w)
        if available < amt:
            db.session.rollback()
            raise InsufficientFunds(available, amt)
        before = to_money(w.balance)
        now = _now()
        txn = VtuTransaction(
            user_id=int(user_id),
            reference=reference,
            service=service,
            description=(description or "")[:255],
            destination=destination,
            amount=amt,
            balance_before=before,
            balance_after=before - amt,
            profit=amt - to_money(cost) if cost is not None else ZERO,
            status="success",
            meta=json.dumps(meta or {}),
            created_at=now,
            finalized_at=now,
        )
        w.balance = before - amt
        w.updated_at = now
        db.session.add(txn)
        db.session.add(w)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return txn
    except SQLAlchemyError:
        raise _persistence_failure("charge")


def find_inflight_duplicate(user_id: int, service: str, destination: str | None, amount, window_seconds: int) -> VtuTransaction | None:
    if not destination or window_seconds <= 0:
        return None
    since = _now() - timedelta(seconds=int(window_seconds))
    return (
        VtuTransaction.query
        .filter(
            VtuTransaction.user_id == int(user_id),
            VtuTransaction.service == service,
            VtuTransaction.destination == destination,
            VtuTransaction.amount == to_money(amount),
            VtuTransaction.status.in_(OPEN_STATUSES),
            VtuTransaction.created_at >= since,
        )
        .order_by(VtuTransaction.created_at.desc())
        .first()
    )


def credit_reward_balance(user_id: int, amount, *, commit: bool = True) -> Wallet:
    amt = _positive(amount)
    try:
        w = _locked_wallet(user_id)
        w.reward_balance = to_money(w.reward_balance) + amt
        w.updated_at = _now()
        db.session.add(w)
        if commit:
            db.session.commit()
        return w
    except SQLAlchemyError:
        raise _persistence_failure("reward credit")


def withdraw_reward_balance(user_id: int, amount=None) -> VtuTransaction:
    """Move reward balance into the main wallet as an ordinary credit record."""
    with account_lock(user_id):
        try:
            w = _locked_wallet(user_id)
            available = to_money(w.reward_balance)
            amt = available if amount is None else _positive(amount)
            if amt <= ZERO or amt > available:
                db.session.rollback()
                raise InsufficientFunds(available, amt)
            w.reward_balance = available - amt
            txn = _credit_locked(
                w,
                amt,
                service="reward_withdrawal",
                reference=make_reference("RWD"),
                description="Reward balance withdrawal",
                meta=None,
            )
            db.session.commit()
            return txn
        except SQLAlchemyError:
            raise _persistence_failure("reward withdrawal")
