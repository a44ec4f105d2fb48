"""Redis store adapter and the per-request atomic batch."""

from __future__ import annotations

import json
import logging

import redis

from errors import StoreFailure


logger = logging.getLogger(__name__)


def dumps(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def loads_list(items) -> list:
    out = []
    for item in items or []:
        try:
            out.append(json.loads(item) if isinstance(item, str) else item)
        except ValueError:
            out.append(item)
    return out


class RedisStore:
    """Thin wrapper over a redis client.

    All writes that belong to one tracked event go through `batch()`. The
    direct write methods here are for the few operations that must be
    visible immediately (rate-limit counters, set-if-absent claims) or that
    run outside ingestion (cleanup, reputation).
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def batch(self) -> "Batch":
        return Batch(self)

    # ---- scalar ----
    def set_if_absent(self, key: str, value="1", ttl: int | None = None) -> bool:
        return bool(self.client.set(key, value, ex=ttl, nx=True))

    def incr(self, key: str) -> int:
        return int(self.client.incr(key))

    def expire(self, key: str, seconds: int) -> None:
        self.client.expire(key, seconds)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self.client.delete(*keys))

    def scan_prefix(self, prefix: str):
        return self.client.scan_iter(match=f"{prefix}*", count=1000)

    # ---- hash ----
    def hgetall(self, key: str) -> dict:
        return self.client.hgetall(key) or {}

    # ---- set ----
    def sadd(self, key: str, member: str) -> bool:
        return bool(self.client.sadd(key, member))

    def srem(self, key: str, member: str) -> None:
        self.client.srem(key, member)

    def scard(self, key: str) -> int:
        return int(self.client.scard(key) or 0)

    def smembers(self, key: str) -> list[str]:
        return sorted(self.client.smembers(key) or [])

    def sinter(self, *keys: str) -> set:
        return set(self.client.sinter(*keys) or [])

    # ---- sorted set ----
    def top(self, key: str, limit: int) -> list[tuple[str, float]]:
        return [(m, float(s)) for m, s in self.client.zrevrange(key, 0, limit - 1, withscores=True)]

    def zrevrank(self, key: str, member: str) -> int | None:
        rank = self.client.zrevrank(key, member)
        return None if rank is None else int(rank)

    def zscore(self, key: str, member: str) -> float | None:
        score = self.client.zscore(key, member)
        return None if score is None else float(score)

    def zcard(self, key: str) -> int:
        return int(self.client.zcard(key) or 0)

    # ---- list ----
    def lrange(self, key: str, start: int = 0, stop: int = -1) -> list:
        return loads_list(self.client.lrange(key, start, stop))


class Batch:
    """Mutations staged for one request and applied in a single MULTI/EXEC.

    Set-if-absent claims taken while building the batch are remembered and
    undone when the commit fails, so a retried request can claim again.
    """

    def __init__(self, store: RedisStore):
        self.store = store
        self._pipe = store.client.pipeline(transaction=True)
        self._undo: list[tuple[str, str, str | None]] = []
        self.size = 0
        self.committed = False

    def _staged(self) -> "Batch":
        self.size += 1
        return self

    # ---- claims (immediate) ----
    def claim(self, key: str, ttl: int | None = None) -> bool:
        if self.store.set_if_absent(key, "1", ttl):
            self._undo.append(("key", key, None))
            return True
        return False

    def claim_member(self, key: str, member: str) -> bool:
        if self.store.sadd(key, member):
            self._undo.append(("member", key, member))
            return True
        return False

    # ---- staged writes ----
    def hincrby(self, key: str, field: str, amount: int = 1) -> "Batch":
        self._pipe.hincrby(key, field, int(amount))
        return self._staged()

    def hincrbyfloat(self, key: str, field: str, amount: float) -> "Batch":
        self._pipe.hincrbyfloat(key, field, float(amount))
        return self._staged()

    def hset(self, key: str, mapping: dict) -> "Batch":
        self._pipe.hset(key, mapping=mapping)
        return self._staged()

    def hsetnx(self, key: str, field: str, value) -> "Batch":
        self._pipe.hsetnx(key, field, value)
        return self._staged()

    def zincrby(self, key: str, amount: float, member: str) -> "Batch":
        self._pipe.zincrby(key, amount, member)
        return self._staged()

    def zadd(self, key: str, member: str, score: float) -> "Batch":
        self._pipe.zadd(key, {member: score})
        return self._staged()

    def sadd(self, key: str, member: str) -> "Batch":
        self._pipe.sadd(key, member)
        return self._staged()

    def lpush_capped(self, key: str, value, cap: int) -> "Batch":
        self._pipe.lpush(key, value if isinstance(value, str) else dumps(value))
        self._pipe.ltrim(key, 0, cap - 1)
        self.size += 1
        return self._staged()

    def expire(self, key: str, seconds: int) -> "Batch":
        self._pipe.expire(key, seconds)
        return self._staged()

    def commit(self) -> list:
        try:
            results = self._pipe.execute()
        except redis.RedisError as e:
            self.release()
            raise StoreFailure() from e
        finally:
            self._pipe.reset()
        self.committed = True
        return results

    def release(self) -> None:
        """Undo claims. Only meaningful before a successful commit."""
        for kind, key, member in reversed(self._undo):
            try:
                if kind == "key":
                    self.store.delete(key)
                else:
                    self.store.srem(key, member)
            except redis.RedisError:
                logger.exception("Failed to release claim on %s", key)
        self._undo = []
