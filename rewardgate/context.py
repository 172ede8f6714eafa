from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from rewardgate.cache.redis_cache import RedisCache
from rewardgate.config import Settings
from rewardgate.domain.clock import SystemClock
from rewardgate.domain.disbursement import DisbursementOrchestrator
from rewardgate.domain.policy import Limits, Profile
from rewardgate.integrations.token_client import build_transmitter
from rewardgate.repos.events_repo import EventLog
from rewardgate.repos.ledger import Ledger
from rewardgate.repos.record_store import RecordStore, StoreIOError, build_store
from rewardgate.worker.run import run_reset_loop
from rewardgate.worker.tasks import ResetController

logger = logging.getLogger(__name__)


def build_profiles(settings: Settings) -> Dict[str, Profile]:
    return {
        "claim": Profile(
            name="claim",
            limits=Limits(
                origin_throttle_ms=settings.ORIGIN_THROTTLE_MS,
                claim_cooldown_ms=settings.CLAIM_COOLDOWN_MS,
                period_cap=settings.CLAIM_PERIOD_CAP,
                conversion_rate=settings.CLAIM_CONVERSION_RATE,
            ),
            claimant_kind="claimants",
            origin_kind="origins",
            require_address=settings.REQUIRE_EVM_ADDRESS,
        ),
        "withdraw": Profile(
            name="withdraw",
            limits=Limits(
                origin_throttle_ms=settings.WITHDRAW_ORIGIN_THROTTLE_MS,
                claim_cooldown_ms=settings.WITHDRAW_COOLDOWN_MS,
                period_cap=settings.WITHDRAW_PERIOD_CAP,
                conversion_rate=Decimal("1"),
            ),
            claimant_kind="withdrawals",
            origin_kind="withdraw_origins",
            require_address=settings.REQUIRE_EVM_ADDRESS,
        ),
    }


class AppContext:
    """Everything one server process shares: store, ledger, transmitter, reset loop."""

    def __init__(
        self,
        settings: Settings,
        clock=None,
        transmitter=None,
        store: Optional[RecordStore] = None,
        run_scheduler: bool = True,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self.store = store or build_store(settings)
        self.events = EventLog(settings.EVENT_LOG_PATH)
        self.ledger = Ledger(self.store, self.events)
        self.transmitter = transmitter or build_transmitter(settings)
        self.cache = RedisCache(settings.REDIS_URL, prefix=settings.REDIS_PREFIX)
        self.profiles = build_profiles(settings)
        self.resets = ResetController(self.store, self.profiles.values(), ZoneInfo(settings.RESET_TIMEZONE))
        self.orchestrator = DisbursementOrchestrator(
            self.store,
            self.ledger,
            self.transmitter,
            self.clock,
            self.resets,
            self.profiles,
            transfer_timeout_sec=settings.TRANSFER_TIMEOUT_SEC,
            lock_wait_sec=settings.CLAIMANT_LOCK_WAIT_SEC,
        )
        self.run_scheduler = run_scheduler
        self._reset_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self.store.load()
        try:
            await self.resets.maybe_reset(self.clock.now_ms())
        except StoreIOError:
            logger.exception("catch-up period reset failed at startup")
        if self.run_scheduler:
            self._reset_task = asyncio.create_task(
                run_reset_loop(self.resets, self.clock, self.settings.RESET_CHECK_INTERVAL_SEC)
            )
        logger.info("rewardgate started (env=%s, store=%s)", self.settings.APP_ENV, type(self.store).__name__)

    async def close(self) -> None:
        if self._reset_task is not None:
            self._reset_task.cancel()
            try:
                await self._reset_task
            except asyncio.CancelledError:
                pass
            self._reset_task = None
        await self.store.close()
        self.cache.close()
