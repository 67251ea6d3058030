from dataclasses import dataclass
from typing import Any, Optional
from pydantic import BaseModel


class DomainVerificationRequest(BaseModel):
    domain: Optional[Any] = None


@dataclass(frozen=True)
class DomainVerificationResult:
    is_valid: bool
    reason: str

    def to_dict(self) -> dict:
        return {"isValid": self.is_valid, "reason": self.reason}
