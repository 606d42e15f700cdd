from datetime import datetime

from vtuhub.extensions import db


class TierPriced:
    """Sell price per pricing tier plus the cost we pay the provider."""

    cost_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    user_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    agent_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    vendor_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    def price_for(self, tier: str):
        if tier == "agent":
            return self.agent_price
        if tier == "vendor":
            return self.vendor_price
        return self.user_price

    def _prices(self) -> dict:
        return {
            "cost_price": str(self.cost_price or 0),
            "user_price": str(self.user_price or 0),
            "agent_price": str(self.agent_price or 0),
            "vendor_price": str(self.vendor_price or 0),
        }


class DataPlan(TierPriced, db.Model):
    __tablename__ = "data_plans"

    id = db.Column(db.Integer, primary_key=True)
    plan_code = db.Column(db.String(40), nullable=False, unique=True, index=True)
    network_id = db.Column(db.Integer, nullable=False, index=True)
    plan_type = db.Column(db.String(16), nullable=False, default="sme")  # sme | corporate | gifting
    name = db.Column(db.String(80), nullable=False)
    validity_days = db.Column(db.Integer, nullable=False, default=30)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        d = {
            "id": self.id,
            "plan_code": self.plan_code,
            "network_id": self.network_id,
            "plan_type": self.plan_type,
            "name": self.name,
            "validity_days": self.validity_days,
            "is_active": bool(self.is_active),
        }
        d.update(self._prices())
        return d


class AirtimeRate(db.Model):
    """Percent of face value charged per tier; cost_percent is what the provider takes."""

    __tablename__ = "airtime_rates"
    __table_args__ = (db.UniqueConstraint("network_id", "airtime_type", name="uq_airtime_rates_network_type"),)

    id = db.Column(db.Integer, primary_key=True)
    network_id = db.Column(db.Integer, nullable=False)
    airtime_type = db.Column(db.String(16), nullable=False, default="vtu")  # vtu | sharesell
    user_percent = db.Column(db.Numeric(6, 2), nullable=False, default=100)
    agent_percent = db.Column(db.Numeric(6, 2), nullable=False, default=100)
    vendor_percent = db.Column(db.Numeric(6, 2), nullable=False, default=100)
    cost_percent = db.Column(db.Numeric(6, 2), nullable=False, default=100)

    def percent_for(self, tier: str):
        if tier == "agent":
            return self.agent_percent
        if tier == "vendor":
            return self.vendor_percent
        return self.user_percent

    def to_dict(self):
        return {
            "network_id": self.network_id,
            "airtime_type": self.airtime_type,
            "user_percent": str(self.user_percent),
            "agent_percent": str(self.agent_percent),
            "vendor_percent": str(self.vendor_percent),
        }


class CablePlan(TierPriced, db.Model):
    __tablename__ = "cable_plans"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, nullable=False, index=True)  # 1 GOTV, 2 DSTV, 3 STARTIMES
    provider_name = db.Column(db.String(32), nullable=False)
    plan_code = db.Column(db.String(40), nullable=False, unique=True)
    name = db.Column(db.String(80), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        d = {
            "id": self.id,
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "plan_code": self.plan_code,
            "name": self.name,
        }
        d.update(self._prices())
        return d


class ElectricityDisco(db.Model):
    __tablename__ = "electricity_discos"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    abbreviation = db.Column(db.String(16), nullable=False)
    service_slug = db.Column(db.String(40), nullable=False)  # e.g. ikeja-electric
    cost_percent = db.Column(db.Numeric(6, 2), nullable=False, default=100)
    min_amount = db.Column(db.Numeric(14, 2), nullable=False, default=500)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "abbreviation": self.abbreviation,
            "service_slug": self.service_slug,
            "min_amount": str(self.min_amount),
        }


class ExamProduct(TierPriced, db.Model):
    __tablename__ = "exam_products"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, unique=True)  # waec | neco | nabteb
    name = db.Column(db.String(80), nullable=False)
    provider_exam_id = db.Column(db.String(16), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        d = {"id": self.id, "code": self.code, "name": self.name}
        d.update(self._prices())
        return d


class PinProduct(TierPriced, db.Model):
    """Printable recharge-card and data PINs."""

    __tablename__ = "pin_products"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, index=True)  # recharge_pin | data_pin
    network_id = db.Column(db.Integer, nullable=False)
    product_code = db.Column(db.String(40), nullable=False)  # denomination or data plan code
    name = db.Column(db.String(80), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (db.UniqueConstraint("kind", "network_id", "product_code", name="uq_pin_products_kind_code"),)

    def to_dict(self):
        d = {
            "id": self.id,
            "kind": self.kind,
            "network_id": self.network_id,
            "product_code": self.product_code,
            "name": self.name,
        }
        d.update(self._prices())
        return d


class IssuedPin(db.Model):
    """Exam, recharge and data PINs returned by providers, kept for reprint."""

    __tablename__ = "issued_pins"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    transaction_reference = db.Column(db.String(80), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)  # exam_pin | card_pin | data_pin
    pin = db.Column(db.String(120), nullable=False)
    serial = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_reference": self.transaction_reference,
            "kind": self.kind,
            "pin": self.pin,
            "serial": self.serial or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
