"""Referral links and referral rewards paid into the secondary reward balance."""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vtuhub.errors import NotFound, PersistenceError, ValidationError
from vtuhub.extensions import db
from vtuhub.models import Referral, User
from vtuhub.utils.money import ZERO, to_money
from vtuhub.utils.networks import normalize_phone
from vtuhub.utils.notify import notify
from vtuhub.utils.wallets import account_lock, credit_reward_balance, get_or_create_wallet


def link_referral(referee: User, referral_code: str | None) -> Referral | None:
    """Record who referred `referee`. The code is the referrer's phone number.

    Unknown codes and self-referrals are ignored.
    """
    if not (referral_code or "").strip():
        return None
    try:
        phone = normalize_phone(referral_code)
    except ValidationError:
        return None
    referrer = User.query.filter_by(phone=phone).first()
    if not referrer or int(referrer.id) == int(referee.id):
        return None

    ref = Referral(
        referrer_id=int(referrer.id),
        referee_id=int(referee.id),
        reward_amount=to_money(current_app.config.get("REFERRAL_REWARD_AMOUNT")),
        reward_claimed=False,
        created_at=datetime.utcnow(),
    )
    try:
        db.session.add(ref)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("referral link for user %s failed", referee.id)
        return None
    return ref


def referral_summary(user_id: int) -> dict:
    rows = (
        Referral.query
        .filter_by(referrer_id=int(user_id))
        .order_by(Referral.created_at.desc(), Referral.id.desc())
        .all()
    )
    referees = {}
    if rows:
        referees = {u.id: u for u in User.query.filter(User.id.in_([r.referee_id for r in rows])).all()}

    claimed = [r for r in rows if r.reward_claimed]
    return {
        "stats": {
            "total_referrals": len(rows),
            "claimed_rewards": len(claimed),
            "pending_rewards": len(rows) - len(claimed),
            "total_earned": str(sum((to_money(r.reward_amount) for r in claimed), ZERO)),
        },
        "referrals": [r.to_dict(referees.get(r.referee_id)) for r in rows],
    }


def claim_referral_reward(user_id: int, referral_id: int) -> dict:
    """Credit one referral's reward to the referrer's reward balance, at most once."""
    with account_lock(user_id):
        ref = Referral.query.filter_by(id=int(referral_id), referrer_id=int(user_id)).first()
        if not ref:
            raise NotFound("Referral not found")
        if ref.reward_claimed:
            raise ValidationError("Reward has already been claimed")

        amount = to_money(ref.reward_amount)
        try:
            # Only one claimer can flip the flag
            won = (
                Referral.query
                .filter_by(id=int(ref.id), reward_claimed=False)
                .update({"reward_claimed": True, "claimed_at": datetime.utcnow()}, synchronize_session=False)
            )
            if not won:
                db.session.rollback()
                raise ValidationError("Reward has already been claimed")
            if amount > ZERO:
                credit_reward_balance(user_id, amount, commit=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("referral claim %s for user %s failed", referral_id, user_id)
            raise PersistenceError()

    current_app.logger.info("referral %s claimed by user %s amount=%s", referral_id, user_id, amount)
    notify(user_id, "referral_claimed", {"amount": str(amount), "status": "credited", "referral_id": int(referral_id)})

    db.session.refresh(ref)
    return {
        "referral": ref.to_dict(),
        "reward_amount": str(amount),
        "wallet": get_or_create_wallet(user_id).to_dict(),
    }
