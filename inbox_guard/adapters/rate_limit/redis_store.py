"""Redis-backed rate limit store shared by every API worker.

State-changing operations run as server-side Lua scripts or native atomic
commands, so concurrent workers on different machines never observe a
half-applied update (e.g. a counter incremented but without its expiry).

Redis errors of any kind (connection refused, socket timeout, script error)
surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

import redis
from redis.exceptions import RedisError

from inbox_guard.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    CounterHit,
    HitStatus,
)
from inbox_guard.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, KEYS[2] = block key
# ARGV: points, window_seconds, block_seconds
# Returns {status, count, ttl_ms}; status 0 = allowed, 1 = blocked, 2 = exceeded
_HIT_LUA = """
local points = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local block = tonumber(ARGV[3])

local block_ttl = redis.call('PTTL', KEYS[2])
if block_ttl ~= -2 then
  if block_ttl < 0 then
    block_ttl = block * 1000
  end
  return {1, 0, block_ttl}
end

local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], window)
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('EXPIRE', KEYS[1], window)
  ttl = window * 1000
end

if count <= points then
  return {0, count, ttl}
end

if block > 0 then
  redis.call('SET', KEYS[2], '1', 'EX', block)
  redis.call('DEL', KEYS[1])
  return {2, count, block * 1000}
end

if count == points + 1 then
  return {2, count, ttl}
end
return {1, count, ttl}
"""

# KEYS[1] = violation log, KEYS[2] = violation counter
# ARGV: entry, max_entries, counter_ttl_seconds
_RECORD_VIOLATION_LUA = """
redis.call('LPUSH', KEYS[1], ARGV[1])
redis.call('LTRIM', KEYS[1], 0, tonumber(ARGV[2]) - 1)
local count = redis.call('INCR', KEYS[2])
redis.call('EXPIRE', KEYS[2], tonumber(ARGV[3]))
return count
"""

_STATUS_BY_CODE = {
    0: HitStatus.ALLOWED,
    1: HitStatus.BLOCKED,
    2: HitStatus.EXCEEDED,
}


class RedisRateLimitStore(AbstractRateLimitStore):
    """Store implementation on top of a ``redis.Redis`` client.

    The client must be created with ``decode_responses=True``.
    """

    backend_name = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._hit_script = client.register_script(_HIT_LUA)
        self._record_violation_script = client.register_script(_RECORD_VIOLATION_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float,
        connect_timeout: float,
    ) -> "RedisRateLimitStore":
        """Build a store with short timeouts suitable for the request path.

        Args:
            url: Redis connection URL.
            socket_timeout: Per-command timeout in seconds.
            connect_timeout: Connection timeout in seconds.

        Returns:
            RedisRateLimitStore bound to a pooled client.
        """
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout,
        )
        return cls(client)

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.warning(
                "rate_limit.store_error",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store is unavailable",
                details={"backend": self.backend_name, "operation": operation},
            ) from exc

    def hit(
        self,
        counter_key: str,
        block_key: str,
        *,
        points: int,
        window_seconds: int,
        block_seconds: int,
    ) -> CounterHit:
        with self._translate_errors("hit"):
            status, count, ttl_ms = self._hit_script(
                keys=[counter_key, block_key],
                args=[points, window_seconds, block_seconds],
            )
        return CounterHit(_STATUS_BY_CODE[int(status)], int(count), int(ttl_ms))

    def memberships(self, set_keys: Sequence[str], member: str) -> list[bool]:
        with self._translate_errors("memberships"):
            pipe = self._client.pipeline(transaction=False)
            for key in set_keys:
                pipe.sismember(key, member)
            results = pipe.execute()
        return [bool(result) for result in results]

    def add_member(self, set_key: str, member: str) -> bool:
        with self._translate_errors("add_member"):
            return bool(self._client.sadd(set_key, member))

    def remove_member(self, set_key: str, member: str) -> bool:
        with self._translate_errors("remove_member"):
            return bool(self._client.srem(set_key, member))

    def members(self, set_key: str) -> set[str]:
        with self._translate_errors("members"):
            return set(self._client.smembers(set_key))

    def record_violation(
        self,
        log_key: str,
        entry: str,
        *,
        max_entries: int,
        count_key: str,
        count_ttl_seconds: int,
    ) -> int:
        with self._translate_errors("record_violation"):
            count = self._record_violation_script(
                keys=[log_key, count_key],
                args=[entry, max_entries, count_ttl_seconds],
            )
        return int(count)

    def recent_entries(self, log_key: str, limit: int) -> list[str]:
        with self._translate_errors("recent_entries"):
            return list(self._client.lrange(log_key, 0, limit - 1))

    def get_counter(self, key: str) -> int:
        with self._translate_errors("get_counter"):
            value = self._client.get(key)
        return int(value) if value else 0

    def hash_set(self, key: str, field: str, value: str) -> None:
        with self._translate_errors("hash_set"):
            self._client.hset(key, field, value)

    def hash_delete(self, key: str, field: str) -> None:
        with self._translate_errors("hash_delete"):
            self._client.hdel(key, field)

    def hash_get_all(self, key: str) -> dict[str, str]:
        with self._translate_errors("hash_get_all"):
            return dict(self._client.hgetall(key))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate_errors("delete"):
            return int(self._client.delete(*keys))

    def ping(self) -> bool:
        with self._translate_errors("ping"):
            return bool(self._client.ping())
