"""
Admission policy.

Pure functions: no I/O, no clock, no shared state. Checks run in a fixed
order and the first failing one decides the rejection reason:

    validate + conversion -> origin throttle -> cooldown -> period cap
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from rewardgate.domain.records import (
    AMOUNT_QUANTUM,
    ZERO,
    ClaimantRecord,
    OriginThrottleRecord,
    Reason,
    Rejected,
)

EVM_ADDRESS = re.compile(r"^0x[0-9a-f]{40}$")


@dataclass(frozen=True)
class Limits:
    origin_throttle_ms: int
    claim_cooldown_ms: int
    period_cap: Decimal
    conversion_rate: Decimal


@dataclass(frozen=True)
class Profile:
    """One entry point into the orchestrator, with its own limits and record kinds."""
    name: str
    limits: Limits
    claimant_kind: str
    origin_kind: str
    require_address: bool = True


@dataclass(frozen=True)
class ValidRequest:
    claimant: str
    basis: Decimal
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Accept:
    amount: Decimal


Decision = Union[Accept, Rejected]


def normalize_identity(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    ident = value.strip().lower()
    return ident or None


def parse_basis(value: Any) -> Optional[Decimal]:
    # bool is an int subclass; `True` is not a score
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        basis = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not basis.is_finite() or basis < 0:
        return None
    return basis


def validate(
    claimant: Any,
    basis: Any,
    require_address: bool = True,
    conversion_rate: Optional[Decimal] = None,
) -> Union[ValidRequest, Rejected]:
    """
    Structural checks. With `conversion_rate` the amount is computed here too,
    so a basis that converts to nothing (or to more than a Decimal can hold)
    is rejected before any record is touched.
    """
    ident = normalize_identity(claimant)
    if ident is None:
        return Rejected(Reason.INVALID_REQUEST, "Missing wallet")
    if require_address and not EVM_ADDRESS.match(ident):
        return Rejected(Reason.INVALID_REQUEST, "Wallet is not a 0x-prefixed 20-byte address")
    parsed = parse_basis(basis)
    if parsed is None:
        return Rejected(Reason.INVALID_REQUEST, "Missing or invalid score/amount")
    if conversion_rate is None:
        return ValidRequest(claimant=ident, basis=parsed)
    amount = convert(parsed, conversion_rate)
    rejection = check_amount(amount)
    if rejection is not None:
        return rejection
    return ValidRequest(claimant=ident, basis=parsed, amount=amount)


def check_origin(record: OriginThrottleRecord, now_ms: int, limits: Limits) -> Optional[Rejected]:
    if limits.origin_throttle_ms <= 0 or record.last_request_at is None:
        return None
    if now_ms - record.last_request_at < limits.origin_throttle_ms:
        return Rejected(Reason.ORIGIN_THROTTLED, "Too many requests from your address. Please wait.")
    return None


def check_cooldown(record: ClaimantRecord, now_ms: int, limits: Limits) -> Optional[Rejected]:
    if limits.claim_cooldown_ms <= 0:
        return None
    if now_ms - record.last_claim_at < limits.claim_cooldown_ms:
        return Rejected(Reason.COOLDOWN_ACTIVE, "Please wait before claiming again.")
    return None


def convert(basis: Decimal, rate: Decimal) -> Optional[Decimal]:
    """basis * rate, 4 fractional digits, half away from zero. None if it overflows the context precision."""
    try:
        return (basis * rate).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def check_amount(amount: Optional[Decimal]) -> Optional[Rejected]:
    if amount is None:
        return Rejected(Reason.INVALID_REQUEST, "Score/amount out of range")
    if amount <= 0:
        return Rejected(Reason.INVALID_REQUEST, "Amount rounds to zero")
    return None


def check_cap(
    record: ClaimantRecord,
    amount: Decimal,
    limits: Limits,
    reserved: Decimal = ZERO,
) -> Optional[Rejected]:
    # strict '>': a claim landing exactly on the cap is allowed
    if record.total_claimed + reserved + amount > limits.period_cap:
        return Rejected(Reason.PERIOD_CAP_EXCEEDED, "Period limit exceeded.")
    return None


def admit(
    request: ValidRequest,
    claimant: ClaimantRecord,
    now_ms: int,
    limits: Limits,
    reserved: Decimal = ZERO,
) -> Decision:
    """Steps 3-6: cooldown, conversion, cap."""
    rejection = check_cooldown(claimant, now_ms, limits)
    if rejection is not None:
        return rejection
    amount = request.amount
    if amount is None:
        amount = convert(request.basis, limits.conversion_rate)
        rejection = check_amount(amount)
        if rejection is not None:
            return rejection
    rejection = check_cap(claimant, amount, limits, reserved)
    if rejection is not None:
        return rejection
    return Accept(amount)


def evaluate(
    claimant_id: Any,
    basis: Any,
    claimant: ClaimantRecord,
    origin: OriginThrottleRecord,
    now_ms: int,
    limits: Limits,
    reserved: Decimal = ZERO,
    require_address: bool = True,
) -> Decision:
    request = validate(claimant_id, basis, require_address, limits.conversion_rate)
    if isinstance(request, Rejected):
        return request
    rejection = check_origin(origin, now_ms, limits)
    if rejection is not None:
        return rejection
    return admit(request, claimant, now_ms, limits, reserved)
