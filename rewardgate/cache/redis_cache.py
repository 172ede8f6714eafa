from __future__ import annotations
import json
from typing import Any, Dict, Optional
import redis


class RedisCache:
    def __init__(self, url: Optional[str] = None, prefix: str = "rewardgate", client: Optional[redis.Redis] = None):
        self.prefix = prefix
        self.client: Optional[redis.Redis] = client
        if self.client is None and url:
            self.client = redis.from_url(url, decode_responses=True)

    def is_enabled(self) -> bool:
        return self.client is not None

    def key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    def get_json(self, key: str) -> Any:
        if not self.client:
            return None
        v = self.client.get(self.key(key))
        return json.loads(v) if v else None

    def set_json(self, key: str, value: Any, ttl_sec: int) -> None:
        if not self.client:
            return
        self.client.set(self.key(key), json.dumps(value), ex=ttl_sec)

    def hget_json(self, name: str, field: str) -> Optional[Dict[str, Any]]:
        if not self.client:
            return None
        v = self.client.hget(self.key(name), field)
        return json.loads(v) if v else None

    def hgetall_json(self, name: str) -> Dict[str, Dict[str, Any]]:
        if not self.client:
            return {}
        raw = self.client.hgetall(self.key(name))
        return {k: json.loads(v) for k, v in raw.items()}

    def pipeline(self):
        # MULTI/EXEC: queued commands apply together or not at all
        return self.client.pipeline(transaction=True)

    def close(self) -> None:
        if self.client:
            self.client.close()
