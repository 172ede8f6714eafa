from __future__ import annotations

import logging
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from rewardgate.domain.clock import period_id
from rewardgate.domain.policy import Profile
from rewardgate.domain.records import ZERO, ClaimantRecord
from rewardgate.repos.record_store import RecordStore

logger = logging.getLogger(__name__)

META = "meta"
PERIOD_KEY = "period"


class ResetController:
    """
    Starts a new accounting period: zeroes every claimant's period total
    (cooldown timestamps stay) and forgets all origin throttle timestamps.

    The sweep is one store transaction, so it holds the store lock for its
    whole duration and every other store access waits for it. Runs once a day.
    """
    def __init__(self, store: RecordStore, profiles: Iterable[Profile], tz: ZoneInfo):
        self.store = store
        self.profiles = list(profiles)
        self.tz = tz

    async def current_period(self) -> Optional[str]:
        meta = await self.store.get(META, PERIOD_KEY)
        return meta.get("id") if meta else None

    async def reset(self, new_period: str) -> int:
        touched = 0
        async with self.store.transaction() as tx:
            for profile in self.profiles:
                for key, value in tx.items(profile.claimant_kind).items():
                    record = ClaimantRecord.from_dict(value)
                    record.total_claimed = ZERO
                    tx.put(profile.claimant_kind, key, record.to_dict())
                    touched += 1
                tx.clear(profile.origin_kind)
            tx.put(META, PERIOD_KEY, {"id": new_period})
        logger.info("period reset to %s: %d claimant records zeroed", new_period, touched)
        return touched

    async def maybe_reset(self, now_ms: int) -> bool:
        """Sweep if `now_ms` falls in a later period than the last one swept."""
        current = period_id(now_ms, self.tz)
        last = await self.current_period()
        if last == current:
            return False
        if last is None:
            # fresh store: nothing accumulated yet, only remember the period
            await self.store.put(META, PERIOD_KEY, {"id": current})
            return False
        await self.reset(current)
        return True
