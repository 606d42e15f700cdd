from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from vtuhub.extensions import db

# Pricing tier: selects which catalog price column applies to this account.
TIERS = ("subscriber", "agent", "vendor")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    password_hash = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    role = db.Column(db.String(32), nullable=False, default="user")  # user | admin

    tier = db.Column(db.String(16), nullable=False, default="subscriber")

    is_blocked = db.Column(db.Boolean, nullable=False, default=False)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def pricing_tier(self) -> str:
        t = (self.tier or "subscriber").strip().lower()
        return t if t in TIERS else "subscriber"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "role": self.role or "user",
            "tier": self.pricing_tier,
            "is_blocked": bool(self.is_blocked),
        }
