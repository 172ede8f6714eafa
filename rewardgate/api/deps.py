from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from rewardgate.context import AppContext
from rewardgate.domain.models import DisbursementOut
from rewardgate.domain.records import Accepted, Outcome, Pending, Reason

HTTP_STATUS = {
    Reason.INVALID_REQUEST: 400,
    Reason.ORIGIN_THROTTLED: 429,
    Reason.COOLDOWN_ACTIVE: 429,
    Reason.PERIOD_CAP_EXCEEDED: 403,
    Reason.BUSY: 409,
    Reason.TRANSFER_FAILED: 502,
    Reason.STORE_IO_ERROR: 500,
}


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx


def client_origin(request: Request) -> str:
    ctx = get_context(request)
    forwarded = request.headers.get("x-forwarded-for", "")
    if ctx.settings.TRUST_FORWARDED_FOR and forwarded.strip():
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def render_outcome(outcome: Outcome) -> JSONResponse:
    if isinstance(outcome, Accepted):
        body = DisbursementOut(status="success", state=outcome.state.value,
                               amount=str(outcome.amount), txHash=outcome.tx_ref)
        code = 200
    elif isinstance(outcome, Pending):
        body = DisbursementOut(status="pending", state=outcome.state.value, amount=str(outcome.amount),
                               txHash=outcome.tx_ref, correlation_id=outcome.correlation_id,
                               reason=outcome.reason.value,
                               detail="Transfer outcome unknown; it will be reconciled.")
        code = 202
    else:
        body = DisbursementOut(status="rejected", state=outcome.state.value,
                               reason=outcome.reason.value, detail=outcome.detail)
        code = HTTP_STATUS[outcome.reason]
    return JSONResponse(status_code=code, content=body.model_dump(exclude_none=True))
