from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, List

import pytest
from fastapi.testclient import TestClient

from rewardgate.config import Settings
from rewardgate.context import AppContext
from rewardgate.domain.clock import ManualClock
from rewardgate.integrations.token_client import TransferReceipt
from rewardgate.main import create_app
from rewardgate.middleware.rate_limit import limiter

# 2025-01-15T12:00:00Z; the next UTC period boundary is 12h later
T0 = 1_736_942_400_000
HOUR = 60 * 60 * 1000
ADMIN_KEY = "test-admin-key"

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


class ScriptedTransmitter:
    """
    Fake ledger transmitter. Each transfer consumes one step from `script`:
    an exception instance is raised, "hang" never returns, a "0x..." string
    is used as the tx hash; an empty script means success.
    """
    def __init__(self):
        self.script: List[Any] = []
        self.calls: List[tuple] = []
        self.gate: asyncio.Event | None = None
        self._n = 0

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt:
        self.calls.append((destination, amount))
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if self.script else None
        if isinstance(step, BaseException):
            raise step
        if step == "hang":
            await asyncio.sleep(3600)
        self._n += 1
        if isinstance(step, str) and step.startswith("0x"):
            return TransferReceipt(tx_ref=step)
        return TransferReceipt(tx_ref=f"0x{self._n:064x}")

    async def balance_of(self, owner=None) -> Decimal:
        return Decimal("42.5")


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        STATE_PATH=str(tmp_path / "state.json"),
        EVENT_LOG_PATH=str(tmp_path / "claims.jsonl"),
        ADMIN_API_KEY=ADMIN_KEY,
        TRANSMITTER_MODE="mock",
        REDIS_URL=None,
        TRANSFER_TIMEOUT_SEC=5.0,
        CLAIMANT_LOCK_WAIT_SEC=5.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture()
def transmitter() -> ScriptedTransmitter:
    return ScriptedTransmitter()


@pytest.fixture()
def make_ctx(tmp_path, clock, transmitter) -> Callable[..., Any]:
    """Factory: `await make_ctx(CLAIM_COOLDOWN_MS=0)` -> started AppContext."""
    async def factory(**overrides) -> AppContext:
        ctx = AppContext(make_settings(tmp_path, **overrides), clock=clock,
                         transmitter=transmitter, run_scheduler=False)
        await ctx.start()
        return ctx

    return factory


@pytest.fixture()
async def ctx(make_ctx) -> AppContext:
    context = await make_ctx()
    yield context
    await context.close()


@pytest.fixture()
def api(tmp_path, clock, transmitter):
    context = AppContext(make_settings(tmp_path), clock=clock, transmitter=transmitter, run_scheduler=False)
    with TestClient(create_app(ctx=context)) as client:
        client.ctx = context
        yield client


def admin_headers() -> dict:
    return {"X-API-Key": ADMIN_KEY}
