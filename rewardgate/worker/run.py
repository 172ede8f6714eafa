from __future__ import annotations

import asyncio
import logging

from rewardgate.domain.clock import next_boundary_ms
from rewardgate.repos.record_store import StoreIOError
from rewardgate.worker.tasks import ResetController

logger = logging.getLogger(__name__)


async def run_reset_loop(resets: ResetController, clock, check_interval_sec: float = 60.0) -> None:
    """
    Wake at the next period boundary (or every `check_interval_sec`, whichever
    is sooner) and run the reset if the period changed. Runs until cancelled.
    """
    while True:
        now = clock.now_ms()
        try:
            await resets.maybe_reset(now)
        except StoreIOError:
            logger.exception("period reset failed; retrying in %.0fs", check_interval_sec)
        until_boundary = (next_boundary_ms(now, resets.tz) - now) / 1000
        await asyncio.sleep(max(0.05, min(check_interval_sec, until_boundary)))
