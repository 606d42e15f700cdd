from __future__ import annotations

from decimal import Decimal


class VtuError(Exception):
    """Base error. `message` is safe to show to the account holder."""

    http_status = 400

    def __init__(self, message: str = "", **extra):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        self.extra = extra

    def to_dict(self) -> dict:
        d = {"ok": False, "message": self.message}
        d.update(self.extra)
        return d


class ValidationError(VtuError):
    http_status = 400


class NotFound(VtuError):
    http_status = 404


class InsufficientFunds(VtuError):
    http_status = 402

    def __init__(self, available: Decimal, required: Decimal):
        super().__init__(
            "Insufficient balance",
            available=str(available),
            required=str(required),
        )
        self.available = available
        self.required = required


class CooldownActive(VtuError):
    http_status = 429

    def __init__(self, retry_after_seconds: int, next_spin_at: str | None = None):
        super().__init__(
            "You can only spin once every 72 hours",
            time_until_next_spin=int(retry_after_seconds),
            next_spin_available=next_spin_at,
        )
        self.retry_after_seconds = int(retry_after_seconds)


class PersistenceError(VtuError):
    http_status = 503

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)


class ProviderConfigError(VtuError):
    """Missing or malformed provider configuration. A bug on our side, never an outcome."""

    http_status = 500


class ProviderTransportError(Exception):
    """Raised inside the gateway only; always converted to an Outcome before returning."""

    def __init__(self, message: str, *, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous
