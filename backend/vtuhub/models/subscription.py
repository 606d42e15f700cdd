from datetime import datetime

from vtuhub.extensions import db


class DailyDataPlan(db.Model):
    """A data plan delivered once per day for `total_cycles` days, paid up front."""

    __tablename__ = "daily_data_plans"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reference = db.Column(db.String(80), nullable=False, unique=True)

    phone = db.Column(db.String(32), nullable=False)
    network_id = db.Column(db.Integer, nullable=False)
    plan_code = db.Column(db.String(40), nullable=False)
    plan_type = db.Column(db.String(16), nullable=False, default="sme")

    price_per_cycle = db.Column(db.Numeric(14, 2), nullable=False)
    total_cycles = db.Column(db.Integer, nullable=False)
    remaining_cycles = db.Column(db.Integer, nullable=False)

    next_delivery_at = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active | finished

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "reference": self.reference,
            "phone": self.phone,
            "network_id": self.network_id,
            "plan_code": self.plan_code,
            "plan_type": self.plan_type,
            "price_per_cycle": str(self.price_per_cycle),
            "total_cycles": self.total_cycles,
            "remaining_cycles": self.remaining_cycles,
            "next_delivery_at": self.next_delivery_at.isoformat() if self.next_delivery_at else None,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
