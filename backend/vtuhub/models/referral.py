from datetime import datetime

from vtuhub.extensions import db


class Referral(db.Model):
    """A referee signed up with the referrer's phone as their referral code."""

    __tablename__ = "referrals"

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # One referrer per account
    referee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    reward_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    reward_claimed = db.Column(db.Boolean, nullable=False, default=False)
    claimed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self, referee=None):
        return {
            "id": self.id,
            "referee_id": self.referee_id,
            "name": (referee.name if referee else "") or "",
            "phone": (referee.phone if referee else None),
            "reward_amount": str(self.reward_amount),
            "reward_claimed": bool(self.reward_claimed),
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "referred_at": self.created_at.isoformat() if self.created_at else None,
        }
