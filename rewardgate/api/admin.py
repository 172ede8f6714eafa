from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rewardgate.api.deps import client_origin, get_context, render_outcome
from rewardgate.config import settings
from rewardgate.domain.clock import period_id
from rewardgate.domain.locks import LockBusy
from rewardgate.domain.models import ResolveIn, WithdrawIn
from rewardgate.middleware.rate_limit import limiter
from rewardgate.repos.ledger import PENDING
from rewardgate.repos.record_store import StoreIOError
from rewardgate.security.api_key import require_admin_api_key


router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/withdraw")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def withdraw(request: Request, payload: WithdrawIn, _=Depends(require_admin_api_key)):
    # direct-amount disbursement; same orchestrator, "withdraw" limits
    ctx = get_context(request)
    outcome = await ctx.orchestrator.evaluate_and_disburse(
        payload.to,
        client_origin(request),
        payload.amount,
        profile="withdraw",
        context={"amount": payload.amount},
    )
    return render_outcome(outcome)


@router.get("/state")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def state(request: Request, _=Depends(require_admin_api_key)):
    ctx = get_context(request)
    try:
        return await ctx.orchestrator.inspect_state()
    except StoreIOError:
        raise HTTPException(status_code=503, detail="Record store unavailable")


@router.get("/events")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def events(request: Request, limit: int = Query(50, ge=1, le=1000), _=Depends(require_admin_api_key)):
    ctx = get_context(request)
    return await ctx.events.tail(limit)


@router.get("/pending")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def pending(request: Request, _=Depends(require_admin_api_key)):
    ctx = get_context(request)
    return await ctx.store.items(PENDING)


@router.post("/pending/{correlation_id}/resolve")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def resolve(request: Request, correlation_id: str, payload: ResolveIn, _=Depends(require_admin_api_key)):
    ctx = get_context(request)
    try:
        outcome = await ctx.orchestrator.resolve_pending(correlation_id, payload.outcome, payload.tx_ref)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LockBusy:
        raise HTTPException(status_code=409, detail="Another request for this wallet is in progress")
    except StoreIOError:
        raise HTTPException(status_code=500, detail="State could not be persisted")
    if outcome is None:
        raise HTTPException(status_code=404, detail="No such pending transfer")
    return render_outcome(outcome)


@router.post("/reset")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
async def reset_now(request: Request, _=Depends(require_admin_api_key)):
    """Force a period reset now, regardless of the calendar."""
    ctx = get_context(request)
    current = period_id(ctx.clock.now_ms(), ctx.resets.tz)
    try:
        touched = await ctx.resets.reset(current)
    except StoreIOError:
        raise HTTPException(status_code=500, detail="State could not be persisted")
    return {"ok": True, "period": current, "claimants_reset": touched}


@router.get("/config")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
def admin_config(request: Request, _=Depends(require_admin_api_key)):
    # don't leak secrets
    ctx = get_context(request)
    return {
        "env": ctx.settings.APP_ENV,
        "store": ctx.settings.STORE_BACKEND,
        "transmitter": ctx.settings.TRANSMITTER_MODE,
        "reset_timezone": ctx.settings.RESET_TIMEZONE,
        "profiles": {
            name: {
                "origin_throttle_ms": p.limits.origin_throttle_ms,
                "claim_cooldown_ms": p.limits.claim_cooldown_ms,
                "period_cap": str(p.limits.period_cap),
                "conversion_rate": str(p.limits.conversion_rate),
            }
            for name, p in ctx.profiles.items()
        },
    }
