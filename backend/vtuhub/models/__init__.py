from .user import User  # noqa: F401
from .wallet import Wallet  # noqa: F401
from .transaction import VtuTransaction  # noqa: F401
from .catalog import (  # noqa: F401
    DataPlan,
    AirtimeRate,
    CablePlan,
    ElectricityDisco,
    ExamProduct,
    PinProduct,
    IssuedPin,
)
from .subscription import DailyDataPlan  # noqa: F401
from .delivery_log import DeliveryLog  # noqa: F401
from .spin import SpinReward, SpinWin  # noqa: F401
from .notification import Notification  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
from .idempotency_key import IdempotencyKey  # noqa: F401
from .referral import Referral  # noqa: F401
