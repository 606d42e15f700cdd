from datetime import datetime

from vtuhub.extensions import db
from vtuhub.utils.money import to_money


class Wallet(db.Model):
    __tablename__ = "wallets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Held for purchases awaiting a provider outcome
    reserved_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Secondary balance fed by referral rewards and spin cashback; moved into `balance` on withdrawal
    reward_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    currency = db.Column(db.String(8), nullable=False, default="NGN")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        balance = to_money(self.balance)
        reserved = to_money(self.reserved_balance)
        return {
            "user_id": int(self.user_id),
            "balance": str(balance),
            "reserved_balance": str(reserved),
            "available_balance": str(balance - reserved),
            "reward_balance": str(to_money(self.reward_balance)),
            "currency": self.currency or "NGN",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
