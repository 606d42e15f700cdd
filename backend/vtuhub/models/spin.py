import json
from datetime import datetime

from vtuhub.extensions import db

REWARD_TYPES = ("airtime", "data", "cashback", "tryagain")

# Win status only moves forward along this order.
WIN_STATUS_ORDER = {"pending": 0, "claimed": 1, "delivered": 2}


class SpinReward(db.Model):
    __tablename__ = "spin_rewards"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(80), nullable=False)
    reward_type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    unit = db.Column(db.String(8), nullable=True)  # NGN | MB | GB
    plan_code = db.Column(db.String(40), nullable=True)  # for data rewards
    weight = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.reward_type,
            "amount": str(self.amount),
            "unit": self.unit or "",
            "plan_code": self.plan_code or "",
            "weight": str(self.weight),
        }


class SpinWin(db.Model):
    __tablename__ = "spin_wins"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reward_id = db.Column(db.Integer, db.ForeignKey("spin_rewards.id"), nullable=False)

    reward_type = db.Column(db.String(16), nullable=False)
    reward_name = db.Column(db.String(80), nullable=False, default="")
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    unit = db.Column(db.String(8), nullable=True)
    plan_code = db.Column(db.String(40), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | claimed | delivered
    meta = db.Column(db.Text, nullable=True)  # JSON: phone, network, delivery_status, delivery_reference

    spin_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    def meta_dict(self):
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            d = json.loads(raw)
            return d if isinstance(d, dict) else {}
        except ValueError:
            return {}

    def update_meta(self, **kw):
        d = self.meta_dict()
        d.update({k: v for k, v in kw.items() if v is not None})
        self.meta = json.dumps(d)

    def advance_to(self, status: str) -> bool:
        if WIN_STATUS_ORDER.get(status, -1) <= WIN_STATUS_ORDER.get(self.status, 0):
            return False
        self.status = status
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "reward_id": self.reward_id,
            "type": self.reward_type,
            "name": self.reward_name,
            "amount": str(self.amount),
            "unit": self.unit or "",
            "plan_code": self.plan_code or "",
            "status": self.status,
            "meta": self.meta_dict(),
            "spin_at": self.spin_at.isoformat() if self.spin_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }
