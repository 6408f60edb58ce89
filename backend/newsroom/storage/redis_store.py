import logging
from typing import Any, List, Optional, Set

import redis

from newsroom.storage.base import KeyValueStore, Op

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """Redis backend; every batch is a MULTI/EXEC transaction."""

    def __init__(self, url: str = None, client: redis.Redis = None):
        if client is None:
            client = redis.Redis.from_url(url, decode_responses=True)
        self.r = client

    def get(self, key: str) -> Optional[str]:
        return self.r.get(key)

    def get_many(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return self.r.mget(keys)

    def members(self, key: str) -> Set[str]:
        return set(self.r.smembers(key))

    def z_range_by_score(self, key: str, lo: float, hi: float) -> List[str]:
        return list(self.r.zrangebyscore(key, lo, hi))

    def z_range_rev(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        return list(self.r.zrevrange(key, start, stop))

    def z_score(self, key: str, member: str) -> Optional[float]:
        return self.r.zscore(key, member)

    def _execute(self, ops: List[Op]) -> List[Any]:
        pipe = self.r.pipeline(transaction=True)
        for op in ops:
            kind, key = op[0], op[1]
            if kind == "set":
                pipe.set(key, op[2])
            elif kind == "sadd":
                pipe.sadd(key, *op[2])
            elif kind == "srem":
                pipe.srem(key, *op[2])
            elif kind == "zadd":
                pipe.zadd(key, {op[3]: op[2]})
            elif kind == "zrem":
                pipe.zrem(key, op[2])
            elif kind == "incrby":
                pipe.incrby(key, op[2])
            elif kind == "incrbyfloat":
                pipe.incrbyfloat(key, op[2])
            elif kind == "delete":
                pipe.delete(key)
            else:
                raise ValueError(f"Unknown operation: {kind}")
        return pipe.execute()

    def close(self) -> None:
        self.r.close()
        logger.info("Disconnected from Redis")
