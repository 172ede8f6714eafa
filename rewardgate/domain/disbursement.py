"""
Disbursement orchestration.

    RECEIVED -> VALIDATED -> ADMITTED -> TRANSFER_PENDING -> CONFIRMED -> SETTLED
                                                          -> FAILED
                                                          -> UNKNOWN

Policy rejections end in REJECTED. Only one request per claimant is between
its snapshot read and its terminal write at any time; a second one waits for
the first instead of being judged against a stale total.
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from rewardgate.domain import policy
from rewardgate.domain.locks import KeyedLocks, LockBusy
from rewardgate.domain.policy import Profile, ValidRequest
from rewardgate.domain.records import (
    Accepted,
    AttemptState,
    ClaimantRecord,
    OriginThrottleRecord,
    Outcome,
    Pending,
    Reason,
    Rejected,
)
from rewardgate.integrations.token_client import (
    TransferNetworkError,
    TransferReceipt,
    TransferRejected,
    TransferTimeout,
)
from rewardgate.repos.ledger import PENDING, Ledger, reserved_amount
from rewardgate.repos.record_store import RecordStore, StoreIOError
from rewardgate.worker.tasks import ResetController

logger = logging.getLogger(__name__)


class _Attempt:
    def __init__(self, profile: str, claimant: Any, origin: Optional[str]):
        self.profile = profile
        self.claimant = claimant
        self.origin = origin
        self.state = AttemptState.RECEIVED

    def advance(self, state: AttemptState) -> None:
        logger.debug("%s %s: %s -> %s", self.profile, self.claimant, self.state.value, state.value)
        self.state = state

    def finish(self, outcome: Outcome) -> Outcome:
        self.advance(outcome.state)
        if isinstance(outcome, Rejected):
            logger.info("%s %s from %s rejected: %s", self.profile, self.claimant, self.origin, outcome.reason.value)
        return outcome


class DisbursementOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        ledger: Ledger,
        transmitter,
        clock,
        resets: ResetController,
        profiles: Mapping[str, Profile],
        transfer_timeout_sec: float = 120.0,
        lock_wait_sec: Optional[float] = 150.0,
    ):
        self.store = store
        self.ledger = ledger
        self.transmitter = transmitter
        self.clock = clock
        self.resets = resets
        self.profiles = dict(profiles)
        self.transfer_timeout_sec = transfer_timeout_sec
        self.lock_wait_sec = lock_wait_sec
        self._claimant_locks = KeyedLocks()

    async def evaluate_and_disburse(
        self,
        claimant: Any,
        origin: Optional[str],
        basis: Any,
        now: Optional[int] = None,
        profile: str = "claim",
        context: Optional[Dict[str, Any]] = None,
    ) -> Outcome:
        prof = self.profiles[profile]
        now_ms = self.clock.now_ms() if now is None else int(now)
        attempt = _Attempt(prof.name, claimant, origin)
        try:
            return await self._run(attempt, prof, claimant, origin, basis, now_ms, context or {})
        except StoreIOError as e:
            logger.error("%s %s: store failure in state %s: %s", prof.name, claimant, attempt.state.value, e)
            return attempt.finish(Rejected(Reason.STORE_IO_ERROR, "State could not be persisted."))

    async def _run(self, attempt, prof, claimant, origin, basis, now_ms, context) -> Outcome:
        await self.resets.maybe_reset(now_ms)

        request = policy.validate(claimant, basis, prof.require_address, prof.limits.conversion_rate)
        if isinstance(request, Rejected):
            return attempt.finish(request)
        attempt.claimant = request.claimant
        attempt.advance(AttemptState.VALIDATED)

        origin_key = policy.normalize_identity(origin)
        if origin_key is not None:
            rejection = await self._touch_origin(prof, origin_key, now_ms)
            if rejection is not None:
                return attempt.finish(rejection)

        try:
            async with self._claimant_locks.hold(f"{prof.name}:{request.claimant}", self.lock_wait_sec):
                return await self._admit_and_transfer(attempt, prof, request, origin_key, now_ms, context)
        except LockBusy:
            return attempt.finish(Rejected(Reason.BUSY, "Another request for this wallet is in progress."))

    async def _touch_origin(self, prof: Profile, origin: str, now_ms: int) -> Optional[Rejected]:
        if prof.limits.origin_throttle_ms <= 0:
            return None
        # check and stamp in one transaction; a throttled request does not move the stamp
        async with self.store.transaction() as tx:
            record = OriginThrottleRecord.from_dict(tx.get(prof.origin_kind, origin))
            rejection = policy.check_origin(record, now_ms, prof.limits)
            if rejection is None:
                tx.put(prof.origin_kind, origin, OriginThrottleRecord(now_ms).to_dict())
        return rejection

    async def _admit_and_transfer(
        self,
        attempt: _Attempt,
        prof: Profile,
        request: ValidRequest,
        origin: Optional[str],
        now_ms: int,
        context: Dict[str, Any],
    ) -> Outcome:
        async with self.store.transaction() as tx:
            record = ClaimantRecord.from_dict(tx.get(prof.claimant_kind, request.claimant))
            reserved = reserved_amount(tx, prof, request.claimant)

        decision = policy.admit(request, record, now_ms, prof.limits, reserved)
        if isinstance(decision, Rejected):
            return attempt.finish(decision)
        amount = decision.amount
        attempt.advance(AttemptState.ADMITTED)

        attempt.advance(AttemptState.TRANSFER_PENDING)
        try:
            receipt = await asyncio.wait_for(
                self.transmitter.transfer(request.claimant, amount), self.transfer_timeout_sec
            )
        except (TransferRejected, TransferNetworkError) as e:
            logger.warning("%s transfer of %s to %s failed: %s", prof.name, amount, request.claimant, e)
            return attempt.finish(Rejected(Reason.TRANSFER_FAILED, "Token transfer failed.", AttemptState.FAILED))
        except (asyncio.TimeoutError, TransferTimeout) as e:
            return await self._park(attempt, prof, request.claimant, origin, amount, now_ms, context,
                                    getattr(e, "tx_ref", None), f"transfer timed out: {e}")
        except Exception as e:
            logger.exception("%s transfer of %s to %s raised unexpectedly", prof.name, amount, request.claimant)
            return await self._park(attempt, prof, request.claimant, origin, amount, now_ms, context,
                                    None, f"transmitter error: {e!r}")

        attempt.advance(AttemptState.CONFIRMED)
        return await self._settle(attempt, prof, request.claimant, origin, amount, receipt, now_ms, context)

    async def _settle(self, attempt, prof, claimant, origin, amount, receipt: TransferReceipt, now_ms, context) -> Outcome:
        try:
            committed = await self.ledger.commit(prof, claimant, amount, receipt.tx_ref, now_ms, origin, context)
        except StoreIOError:
            logger.critical("tx %s sent %s to %s but was not fully recorded", receipt.tx_ref, amount, claimant)
            raise
        if not committed:
            logger.warning("transmitter returned already-settled tx %s for %s", receipt.tx_ref, claimant)
        return attempt.finish(Accepted(amount=amount, tx_ref=receipt.tx_ref))

    async def _park(self, attempt, prof, claimant, origin, amount, now_ms, context, tx_ref, detail) -> Outcome:
        attempt.advance(AttemptState.UNKNOWN)
        try:
            correlation_id = await self.ledger.record_pending(
                prof, claimant, amount, now_ms, origin=origin, tx_ref=tx_ref, context=context, detail=detail
            )
        except StoreIOError:
            logger.critical("unknown-outcome transfer of %s to %s (tx %s) could not be recorded", amount, claimant, tx_ref)
            raise
        logger.warning("%s transfer of %s to %s has unknown outcome (%s); pending %s",
                       prof.name, amount, claimant, detail, correlation_id)
        return attempt.finish(Pending(correlation_id=correlation_id, amount=amount, tx_ref=tx_ref))

    async def resolve_pending(
        self,
        correlation_id: str,
        outcome: str,
        tx_ref: Optional[str] = None,
    ) -> Optional[Outcome]:
        """
        Operator reconciliation of an UNKNOWN transfer. `outcome` is
        "confirmed" (commit it, idempotent on tx_ref) or "failed" (release the
        reservation). Returns None when the correlation id is not pending.
        """
        entry = await self.store.get(PENDING, correlation_id)
        if entry is None:
            return None
        prof = self.profiles[entry["profile"]]
        amount = Decimal(entry["amount"])
        claimant = entry["claimant"]

        if outcome == "failed":
            await self.ledger.drop_pending(correlation_id)
            logger.info("pending %s for %s resolved as failed", correlation_id, claimant)
            return Rejected(Reason.TRANSFER_FAILED, "Resolved as failed by operator.", AttemptState.FAILED)
        if outcome != "confirmed":
            raise ValueError(f"unknown outcome {outcome!r}")

        ref = tx_ref or entry.get("tx_ref")
        if not ref:
            raise ValueError("tx_ref is required to confirm a transfer")
        async with self._claimant_locks.hold(f"{prof.name}:{claimant}", self.lock_wait_sec):
            await self.ledger.commit(
                prof, claimant, amount, ref, int(entry["created_at"]),
                origin=entry.get("origin"), context=entry.get("context"), pending_id=correlation_id,
            )
        logger.info("pending %s for %s resolved as confirmed (tx %s)", correlation_id, claimant, ref)
        return Accepted(amount=amount, tx_ref=ref)

    async def inspect_state(self) -> Dict[str, Dict[str, Any]]:
        return await self.store.snapshot()
