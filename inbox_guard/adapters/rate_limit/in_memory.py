"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use it for tests and single-worker development; production uses Redis.
- Thread-safe: one lock guards all state, which gives every method the same
  atomicity the Redis scripts provide.
- Expiry is lazy: records are dropped when touched after their deadline, and
  a periodic sweep on the hit path removes the ones nobody touches again.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Sequence

from inbox_guard.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    CounterHit,
    HitStatus,
)


@dataclass
class _Expiring:
    value: int
    expires_at: float | None


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Store implementing the counter/block contract on process memory.

    Important:
        State is lost on restart and is not shared between workers.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: int = 1000,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval: Drop every expired record once per this many
                hits, so clients that never come back do not pile up.
        """
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._hits_since_sweep = 0
        self._lock = threading.RLock()
        self._values: dict[str, _Expiring] = {}
        self._sets: dict[str, set[str]] = {}
        self._lists: dict[str, deque[str]] = {}
        self._hashes: dict[str, dict[str, str]] = {}

    def _sweep(self, now: float) -> None:
        expired = [
            key
            for key, record in self._values.items()
            if record.expires_at is not None and record.expires_at <= now
        ]
        for key in expired:
            del self._values[key]

    def _live(self, key: str, now: float) -> _Expiring | None:
        record = self._values.get(key)
        if record is None:
            return None
        if record.expires_at is not None and record.expires_at <= now:
            del self._values[key]
            return None
        return record

    def _ttl_ms(self, record: _Expiring, now: float) -> int:
        if record.expires_at is None:
            return -1
        return max(0, int((record.expires_at - now) * 1000))

    def hit(
        self,
        counter_key: str,
        block_key: str,
        *,
        points: int,
        window_seconds: int,
        block_seconds: int,
    ) -> CounterHit:
        with self._lock:
            now = self._clock()

            self._hits_since_sweep += 1
            if self._hits_since_sweep >= self._sweep_interval:
                self._hits_since_sweep = 0
                self._sweep(now)

            block = self._live(block_key, now)
            if block is not None:
                return CounterHit(HitStatus.BLOCKED, 0, self._ttl_ms(block, now))

            counter = self._live(counter_key, now)
            if counter is None:
                counter = _Expiring(value=0, expires_at=now + window_seconds)
                self._values[counter_key] = counter
            counter.value += 1
            count = counter.value
            ttl_ms = self._ttl_ms(counter, now)

            if count <= points:
                return CounterHit(HitStatus.ALLOWED, count, ttl_ms)

            if block_seconds > 0:
                self._values[block_key] = _Expiring(value=1, expires_at=now + block_seconds)
                del self._values[counter_key]
                return CounterHit(HitStatus.EXCEEDED, count, block_seconds * 1000)

            status = HitStatus.EXCEEDED if count == points + 1 else HitStatus.BLOCKED
            return CounterHit(status, count, ttl_ms)

    def memberships(self, set_keys: Sequence[str], member: str) -> list[bool]:
        with self._lock:
            return [member in self._sets.get(key, ()) for key in set_keys]

    def add_member(self, set_key: str, member: str) -> bool:
        with self._lock:
            members = self._sets.setdefault(set_key, set())
            if member in members:
                return False
            members.add(member)
            return True

    def remove_member(self, set_key: str, member: str) -> bool:
        with self._lock:
            members = self._sets.get(set_key)
            if not members or member not in members:
                return False
            members.discard(member)
            if not members:
                del self._sets[set_key]
            return True

    def members(self, set_key: str) -> set[str]:
        with self._lock:
            return set(self._sets.get(set_key, ()))

    def record_violation(
        self,
        log_key: str,
        entry: str,
        *,
        max_entries: int,
        count_key: str,
        count_ttl_seconds: int,
    ) -> int:
        with self._lock:
            now = self._clock()
            log = self._lists.setdefault(log_key, deque())
            log.appendleft(entry)
            while len(log) > max_entries:
                log.pop()

            counter = self._live(count_key, now)
            if counter is None:
                counter = _Expiring(value=0, expires_at=None)
                self._values[count_key] = counter
            counter.value += 1
            counter.expires_at = now + count_ttl_seconds
            return counter.value

    def recent_entries(self, log_key: str, limit: int) -> list[str]:
        with self._lock:
            log = self._lists.get(log_key)
            if not log:
                return []
            return list(log)[:limit]

    def get_counter(self, key: str) -> int:
        with self._lock:
            record = self._live(key, self._clock())
            return record.value if record else 0

    def hash_set(self, key: str, field: str, value: str) -> None:
        with self._lock:
            self._hashes.setdefault(key, {})[field] = value

    def hash_delete(self, key: str, field: str) -> None:
        with self._lock:
            fields = self._hashes.get(key)
            if fields is not None:
                fields.pop(field, None)

    def hash_get_all(self, key: str) -> dict[str, str]:
        with self._lock:
            return dict(self._hashes.get(key, {}))

    def delete(self, *keys: str) -> int:
        deleted = 0
        with self._lock:
            now = self._clock()
            for key in keys:
                if self._live(key, now) is not None:
                    del self._values[key]
                    deleted += 1
                for container in (self._sets, self._lists, self._hashes):
                    if container.pop(key, None) is not None:
                        deleted += 1
        return deleted

    def ping(self) -> bool:
        return True
