from typing import Any, Literal, Optional

from pydantic import BaseModel


class ClaimIn(BaseModel):
    # left loose on purpose: the admission policy reports INVALID_REQUEST itself
    wallet: Any = None
    score: Any = None


class WithdrawIn(BaseModel):
    to: Any = None
    amount: Any = None


class ResolveIn(BaseModel):
    outcome: Literal["confirmed", "failed"]
    tx_ref: Optional[str] = None


class DisbursementOut(BaseModel):
    status: str          # success | pending | rejected
    state: str
    amount: Optional[str] = None
    txHash: Optional[str] = None
    correlation_id: Optional[str] = None
    reason: Optional[str] = None
    detail: Optional[str] = None


class BalanceOut(BaseModel):
    balance: str
    cached: bool = False
