from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from rewardgate.api.deps import client_origin, get_context, render_outcome
from rewardgate.config import settings
from rewardgate.domain.models import BalanceOut, ClaimIn
from rewardgate.middleware.rate_limit import limiter

router = APIRouter(prefix="/api/public", tags=["public"])
logger = logging.getLogger(__name__)

BALANCE_CACHE_KEY = "treasury:balance"


@router.post("/claim")
@limiter.limit(lambda: settings.PUBLIC_RATE_LIMIT)
async def claim(request: Request, payload: ClaimIn):
    """
    Score-based reward claim.
    10000 score = 1 token by default; per-wallet cooldown and daily cap,
    per-address request throttle.
    """
    ctx = get_context(request)
    outcome = await ctx.orchestrator.evaluate_and_disburse(
        payload.wallet,
        client_origin(request),
        payload.score,
        profile="claim",
        context={"score": payload.score},
    )
    return render_outcome(outcome)


@router.get("/balance", response_model=BalanceOut)
@limiter.limit(lambda: settings.PUBLIC_RATE_LIMIT)
async def balance(request: Request):
    """Treasury token balance. Informational only; never used for admission."""
    ctx = get_context(request)
    cached = ctx.cache.get_json(BALANCE_CACHE_KEY)
    if cached is not None:
        return BalanceOut(balance=cached, cached=True)
    try:
        value = await ctx.transmitter.balance_of()
    except Exception:
        logger.exception("balance query failed")
        raise HTTPException(status_code=500, detail="Could not fetch token balance")
    ctx.cache.set_json(BALANCE_CACHE_KEY, str(value), ttl_sec=ctx.settings.BALANCE_CACHE_TTL_SEC)
    return BalanceOut(balance=str(value))
