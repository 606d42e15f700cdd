from datetime import datetime

from vtuhub.extensions import db


class DeliveryLog(db.Model):
    """Append-only record of every scheduled delivery attempt."""

    __tablename__ = "delivery_logs"

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("daily_data_plans.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    phone = db.Column(db.String(32), nullable=False)
    network_id = db.Column(db.Integer, nullable=False)
    plan_code = db.Column(db.String(40), nullable=False)
    transaction_ref = db.Column(db.String(120), nullable=False)

    status = db.Column(db.String(16), nullable=False, index=True)  # success | failed | processing
    http_code = db.Column(db.Integer, nullable=True)
    provider_response = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "user_id": self.user_id,
            "phone": self.phone,
            "network_id": self.network_id,
            "plan_code": self.plan_code,
            "transaction_ref": self.transaction_ref,
            "status": self.status,
            "http_code": self.http_code,
            "provider_response": self.provider_response or "",
            "error_message": self.error_message or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
