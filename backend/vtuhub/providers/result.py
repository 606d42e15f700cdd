from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PROCESSING = "processing"


@dataclass
class ProviderResult:
    outcome: Outcome
    message: str = ""
    provider: str = ""
    http_code: Optional[int] = None
    raw_body: str = ""
    data: Any = None
    # transport | ambiguous | gateway_timeout | provider_error | validation | rejected | unparseable | None
    reason: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def is_validation_error(self) -> bool:
        return self.outcome is Outcome.FAILED and self.reason == "validation"
