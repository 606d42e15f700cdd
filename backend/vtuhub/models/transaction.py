import json
from datetime import datetime

from vtuhub.extensions import db

TERMINAL_STATUSES = ("success", "failed")
OPEN_STATUSES = ("pending", "processing")


class VtuTransaction(db.Model):
    """One row per purchase, funding or refund.

    pending    -> funds held, provider not answered yet
    processing -> provider answer was ambiguous, hold kept until resolved
    success    -> balance debited (or credited for funding rows)
    failed     -> hold released, balance untouched
    """

    __tablename__ = "vtu_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reference = db.Column(db.String(80), nullable=False, unique=True, index=True)
    service = db.Column(db.String(32), nullable=False, index=True)  # airtime | data | cable | ...
    description = db.Column(db.String(255), nullable=False, default="")
    destination = db.Column(db.String(64), nullable=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    balance_before = db.Column(db.Numeric(14, 2), nullable=False)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False)
    profit = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    provider = db.Column(db.String(64), nullable=True)
    provider_http_code = db.Column(db.Integer, nullable=True)
    provider_response = db.Column(db.Text, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    finalized_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def meta_dict(self):
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            d = json.loads(raw)
            return d if isinstance(d, dict) else {}
        except ValueError:
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "reference": self.reference,
            "service": self.service,
            "description": self.description or "",
            "destination": self.destination or "",
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "profit": str(self.profit or 0),
            "status": self.status,
            "provider": self.provider or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "meta": self.meta_dict(),
        }
