from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from rewardgate.domain.clock import iso_utc
from rewardgate.domain.policy import Profile
from rewardgate.domain.records import ZERO, ClaimantRecord, DisbursementEvent
from rewardgate.repos.events_repo import EventLog
from rewardgate.repos.record_store import RecordStore, StoreIOError, Transaction

logger = logging.getLogger(__name__)

SETTLEMENTS = "settlements"
PENDING = "pending"


def reserved_amount(tx: Transaction, profile: Profile, claimant: str) -> Decimal:
    """Sum of unresolved (UNKNOWN) transfers held against the claimant's cap."""
    total = ZERO
    for entry in tx.items(PENDING).values():
        if entry.get("claimant") == claimant and entry.get("profile") == profile.name:
            total += Decimal(entry["amount"])
    return total


class Ledger:
    def __init__(self, store: RecordStore, events: EventLog):
        self.store = store
        self.events = events

    async def commit(
        self,
        profile: Profile,
        claimant: str,
        amount: Decimal,
        tx_ref: str,
        now_ms: int,
        origin: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        pending_id: Optional[str] = None,
    ) -> bool:
        """
        Record one confirmed transfer. Returns False when `tx_ref` was already
        settled; the claimant record is then left alone.

        The amount is added to the record as stored at commit time, not to the
        snapshot the admission decision was made on, so a period reset that
        happened while the transfer was in flight is kept.
        """
        async with self.store.transaction() as tx:
            if pending_id is not None:
                tx.delete(PENDING, pending_id)
            if tx.get(SETTLEMENTS, tx_ref) is not None:
                logger.info("tx %s already settled; not counting it again", tx_ref)
                return False
            record = ClaimantRecord.from_dict(tx.get(profile.claimant_kind, claimant))
            # late operator confirmations must not move the cooldown backwards
            record.last_claim_at = max(record.last_claim_at, now_ms)
            record.total_claimed += amount
            record.last_tx_ref = tx_ref
            tx.put(profile.claimant_kind, claimant, record.to_dict())
            tx.put(SETTLEMENTS, tx_ref, {
                "claimant": claimant,
                "profile": profile.name,
                "amount": str(amount),
                "settled_at": now_ms,
            })

        event = DisbursementEvent(
            claimant=claimant,
            origin=origin,
            amount=amount,
            tx_ref=tx_ref,
            profile=profile.name,
            context=context or {},
            at_ms=now_ms,
            at=iso_utc(now_ms),
        )
        try:
            await self.events.append(event)
        except StoreIOError:
            # accounting is committed; the settlement record still holds the event facts
            logger.critical("event log append failed for settled tx: %s", event.to_dict())
            raise
        logger.info("settled %s %s -> %s (tx %s)", profile.name, amount, claimant, tx_ref)
        return True

    async def record_pending(
        self,
        profile: Profile,
        claimant: str,
        amount: Decimal,
        now_ms: int,
        origin: Optional[str] = None,
        tx_ref: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        detail: str = "",
    ) -> str:
        correlation_id = uuid.uuid4().hex
        await self.store.put(PENDING, correlation_id, {
            "claimant": claimant,
            "origin": origin,
            "profile": profile.name,
            "amount": str(amount),
            "tx_ref": tx_ref,
            "context": context or {},
            "created_at": now_ms,
            "detail": detail,
        })
        return correlation_id

    async def drop_pending(self, correlation_id: str) -> Optional[Dict[str, Any]]:
        async with self.store.transaction() as tx:
            entry = tx.get(PENDING, correlation_id)
            if entry is not None:
                tx.delete(PENDING, correlation_id)
            return entry
