from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

AMOUNT_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0.0000")


class Reason(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    ORIGIN_THROTTLED = "ORIGIN_THROTTLED"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    PERIOD_CAP_EXCEEDED = "PERIOD_CAP_EXCEEDED"
    BUSY = "BUSY"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    TRANSFER_UNKNOWN = "TRANSFER_UNKNOWN"
    STORE_IO_ERROR = "STORE_IO_ERROR"


class AttemptState(str, Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    ADMITTED = "ADMITTED"
    TRANSFER_PENDING = "TRANSFER_PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"
    SETTLED = "SETTLED"
    REJECTED = "REJECTED"


@dataclass
class ClaimantRecord:
    last_claim_at: int = 0
    total_claimed: Decimal = ZERO
    last_tx_ref: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClaimantRecord":
        if not data:
            return cls()
        return cls(
            last_claim_at=int(data.get("last_claim_at", 0)),
            total_claimed=Decimal(str(data.get("total_claimed", "0"))).quantize(AMOUNT_QUANTUM),
            last_tx_ref=str(data.get("last_tx_ref", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_claim_at": self.last_claim_at,
            "total_claimed": str(self.total_claimed.quantize(AMOUNT_QUANTUM)),
            "last_tx_ref": self.last_tx_ref,
        }


@dataclass
class OriginThrottleRecord:
    last_request_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OriginThrottleRecord":
        if not data or data.get("last_request_at") is None:
            return cls()
        return cls(last_request_at=int(data["last_request_at"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"last_request_at": self.last_request_at}


@dataclass(frozen=True)
class Accepted:
    amount: Decimal
    tx_ref: str
    state: AttemptState = AttemptState.SETTLED


@dataclass(frozen=True)
class Rejected:
    reason: Reason
    detail: str = ""
    state: AttemptState = AttemptState.REJECTED


@dataclass(frozen=True)
class Pending:
    correlation_id: str
    amount: Decimal
    tx_ref: Optional[str] = None
    reason: Reason = Reason.TRANSFER_UNKNOWN
    state: AttemptState = AttemptState.UNKNOWN


Outcome = Union[Accepted, Rejected, Pending]


@dataclass
class DisbursementEvent:
    claimant: str
    amount: Decimal
    tx_ref: str
    profile: str
    at_ms: int
    at: str
    origin: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claimant": self.claimant,
            "origin": self.origin,
            "amount": str(self.amount),
            "tx_ref": self.tx_ref,
            "profile": self.profile,
            "context": self.context,
            "at_ms": self.at_ms,
            "at": self.at,
        }
