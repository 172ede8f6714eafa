"""
Durable record store.

Keyed collections ("kinds") of JSON-ready dict records. All writes go through
`transaction()`, which holds the store-wide lock, buffers changes and commits
them atomically when the block exits cleanly. A failed commit raises
StoreIOError and leaves previously persisted data untouched.

Both backends keep the whole state in memory (one process owns it) and serve
reads from there; only load and commit do I/O, off the event loop.

Backends:
- FileRecordStore: one JSON document, replaced with write-temp + fsync + rename.
- RedisRecordStore: one hash per kind, commits as a single MULTI/EXEC.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set, Tuple

import redis

from rewardgate.cache.redis_cache import RedisCache

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
FORMAT_VERSION = 1


class StoreIOError(Exception):
    pass


class Transaction:
    def __init__(self, store: "RecordStore"):
        self._store = store
        self.puts: Dict[Tuple[str, str], Record] = {}
        self.deletes: Set[Tuple[str, str]] = set()
        self.cleared: Set[str] = set()

    @property
    def dirty(self) -> bool:
        return bool(self.puts or self.deletes or self.cleared)

    def get(self, kind: str, key: str) -> Optional[Record]:
        if (kind, key) in self.puts:
            return copy.deepcopy(self.puts[(kind, key)])
        if (kind, key) in self.deletes or kind in self.cleared:
            return None
        return copy.deepcopy(self._store._read(kind, key))

    def items(self, kind: str) -> Dict[str, Record]:
        out = {} if kind in self.cleared else self._store._read_all(kind)
        for k, key in self.deletes:
            if k == kind:
                out.pop(key, None)
        for (k, key), value in self.puts.items():
            if k == kind:
                out[key] = value
        return copy.deepcopy(out)

    def put(self, kind: str, key: str, value: Record) -> None:
        self.deletes.discard((kind, key))
        self.puts[(kind, key)] = copy.deepcopy(value)

    def delete(self, kind: str, key: str) -> None:
        self.puts.pop((kind, key), None)
        self.deletes.add((kind, key))

    def clear(self, kind: str) -> None:
        self.puts = {k: v for k, v in self.puts.items() if k[0] != kind}
        self.deletes = {k for k in self.deletes if k[0] != kind}
        self.cleared.add(kind)
class RecordStore:
    def __init__(self):
        self._lock = asyncio.Lock()
        self._data: Dict[str, Dict[str, Record]] = {}

    async def load(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def _read(self, kind: str, key: str) -> Optional[Record]:
        return self._data.get(kind, {}).get(key)

    def _read_all(self, kind: str) -> Dict[str, Record]:
        return dict(self._data.get(kind, {}))

    def _kinds(self) -> Set[str]:
        return set(self._data)

    def _applied(self, tx: Transaction) -> Dict[str, Dict[str, Record]]:
        """The in-memory state as it will be once `tx` is persisted."""
        state = {kind: dict(records) for kind, records in self._data.items()}
        for kind in tx.cleared:
            state[kind] = {}
        for kind, key in tx.deletes:
            state.get(kind, {}).pop(key, None)
        for (kind, key), value in tx.puts.items():
            state.setdefault(kind, {})[key] = value
        return state

    def _commit(self, tx: Transaction) -> None:
        raise NotImplementedError

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._lock:
            tx = Transaction(self)
            yield tx
            if tx.dirty:
                await asyncio.to_thread(self._commit, tx)

    async def get(self, kind: str, key: str) -> Optional[Record]:
        async with self.transaction() as tx:
            return tx.get(kind, key)

    async def put(self, kind: str, key: str, value: Record) -> None:
        async with self.transaction() as tx:
            tx.put(kind, key, value)

    async def items(self, kind: str) -> Dict[str, Record]:
        async with self.transaction() as tx:
            return tx.items(kind)

    async def reset_all(self, kind: str, update: Optional[Callable[[Record], Record]] = None) -> int:
        """Clear `kind`, or rewrite every record through `update`. Returns records touched."""
        async with self.transaction() as tx:
            records = tx.items(kind)
            if update is None:
                tx.clear(kind)
            else:
                for key, value in records.items():
                    tx.put(kind, key, update(value))
            return len(records)

    async def snapshot(self) -> Dict[str, Dict[str, Record]]:
        async with self.transaction() as tx:
            return {kind: tx.items(kind) for kind in sorted(self._kinds())}


class FileRecordStore(RecordStore):
    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)

    async def load(self) -> None:
        self._data = await asyncio.to_thread(self._load_file)
        logger.info("record store loaded from %s (%d kinds)", self.path, len(self._data))

    def _load_file(self) -> Dict[str, Dict[str, Record]]:
        if not self.path.exists():
            logger.info("no state file at %s; starting empty", self.path)
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                doc = json.load(f)
            collections = doc["collections"]
            if not isinstance(collections, dict) or not all(
                isinstance(records, dict) and all(isinstance(r, dict) for r in records.values())
                for records in collections.values()
            ):
                raise ValueError("collections must map kind -> key -> record")
            return collections
        except (OSError, ValueError, KeyError, TypeError) as e:
            aside = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time() * 1000)}")
            logger.warning("state file %s is unreadable (%s); starting empty, moving it to %s", self.path, e, aside)
            try:
                os.replace(self.path, aside)
            except OSError:
                logger.exception("could not move corrupt state file aside")
            return {}

    def _commit(self, tx: Transaction) -> None:
        state = self._applied(tx)
        try:
            self._write(state)
        except (OSError, TypeError, ValueError) as e:
            raise StoreIOError(f"could not persist {self.path}: {e}") from e
        self._data = state

    def _write(self, state: Dict[str, Dict[str, Record]]) -> None:
        payload = json.dumps({"version": FORMAT_VERSION, "collections": state}, sort_keys=True)
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            with suppress(FileNotFoundError):
                os.unlink(tmp)
            raise
        if hasattr(os, "O_DIRECTORY"):
            dir_fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)


class RedisRecordStore(RecordStore):
    """
    Redis is the durable copy; the in-memory mirror is filled once by load()
    and updated only after a MULTI/EXEC commit succeeds.
    """
    def __init__(self, cache: RedisCache):
        super().__init__()
        if not cache.is_enabled():
            raise ValueError("RedisRecordStore needs REDIS_URL")
        self.cache = cache

    async def load(self) -> None:
        # no mirror means no safe admission decisions; refuse to start
        self._data = await asyncio.to_thread(self._load_all)
        logger.info("record store loaded from redis (%d kinds)", len(self._data))

    def _load_all(self) -> Dict[str, Dict[str, Record]]:
        try:
            kinds = self.cache.client.smembers(self.cache.key("kinds"))
            return {kind: self.cache.hgetall_json(self._hash(kind)) for kind in kinds}
        except (redis.RedisError, ValueError) as e:
            raise StoreIOError(f"could not load record store from redis: {e}") from e

    async def close(self) -> None:
        self.cache.close()

    def _hash(self, kind: str) -> str:
        return f"store:{kind}"

    def _commit(self, tx: Transaction) -> None:
        state = self._applied(tx)
        pipe = self.cache.pipeline()
        for kind in tx.cleared:
            pipe.delete(self.cache.key(self._hash(kind)))
        for kind, key in tx.deletes:
            pipe.hdel(self.cache.key(self._hash(kind)), key)
        for (kind, key), value in tx.puts.items():
            pipe.hset(self.cache.key(self._hash(kind)), key, json.dumps(value))
            pipe.sadd(self.cache.key("kinds"), kind)
        try:
            pipe.execute()
        except redis.RedisError as e:
            raise StoreIOError(f"redis commit failed: {e}") from e
        self._data = state


def build_store(settings) -> RecordStore:
    if settings.STORE_BACKEND == "redis":
        return RedisRecordStore(RedisCache(settings.REDIS_URL, prefix=settings.REDIS_PREFIX))
    return FileRecordStore(settings.STATE_PATH)
