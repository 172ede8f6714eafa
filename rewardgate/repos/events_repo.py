from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from rewardgate.domain.records import DisbursementEvent
from rewardgate.repos.record_store import StoreIOError

logger = logging.getLogger(__name__)


class EventLog:
    """
    Append-only JSON-lines log of confirmed disbursements.
    Each append is a single write + fsync; lines are never rewritten.
    """
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def append(self, event: DisbursementEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True) + "\n"
        async with self._lock:
            try:
                await asyncio.to_thread(self._append_line, line)
            except OSError as e:
                raise StoreIOError(f"could not append to {self.path}: {e}") from e

    def _append_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    async def tail(self, n: int) -> List[Dict[str, Any]]:
        async with self._lock:
            lines = await asyncio.to_thread(self._tail_lines, n)
        out = []
        for raw in lines:
            try:
                out.append(json.loads(raw))
            except ValueError:
                # a torn last line after a crash mid-append
                logger.warning("skipping unparseable event log line: %r", raw[:200])
        return out

    def _tail_lines(self, n: int) -> List[str]:
        """Last n lines, reading backwards in blocks instead of loading the whole file."""
        if n <= 0:
            return []
        try:
            with open(self.path, "rb") as f:
                f.seek(0, os.SEEK_END)
                pos = f.tell()
                data = b""
                lines: List[bytes] = []
                while pos > 0 and len(lines) <= n:
                    step = min(4096, pos)
                    pos -= step
                    f.seek(pos)
                    data = f.read(step) + data
                    lines = data.splitlines()
        except FileNotFoundError:
            return []
        return [b.decode("utf-8", errors="replace") for b in lines[-n:] if b.strip()]
