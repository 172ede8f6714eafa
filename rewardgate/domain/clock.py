from __future__ import annotations

import datetime
import time
from zoneinfo import ZoneInfo


class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = int(now_ms)

    def advance(self, delta_ms: int) -> int:
        self._now += int(delta_ms)
        return self._now


def _local(now_ms: int, tz: ZoneInfo) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(now_ms / 1000, tz=tz)


def period_id(now_ms: int, tz: ZoneInfo) -> str:
    """Calendar day containing `now_ms` in `tz`, as an ISO date."""
    return _local(now_ms, tz).date().isoformat()


def next_boundary_ms(now_ms: int, tz: ZoneInfo) -> int:
    local = _local(now_ms, tz)
    tomorrow = local.date() + datetime.timedelta(days=1)
    boundary = datetime.datetime.combine(tomorrow, datetime.time.min, tzinfo=tz)
    return int(boundary.timestamp() * 1000)


def iso_utc(now_ms: int) -> str:
    return datetime.datetime.fromtimestamp(now_ms / 1000, tz=datetime.timezone.utc).isoformat()
