"""Rate limit store interfaces.

The limiter depends on this abstraction (not the concrete implementation) so
the shared Redis store can be swapped for the in-memory fake in tests and
single-process deployments.

Every method that changes state is a single atomic primitive on the backing
store. Implementations raise ``StoreUnavailableError`` when the store cannot
be reached; they never fail open themselves, that policy lives in the
limiter.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class HitStatus(str, Enum):
    """Outcome of one counter hit."""

    ALLOWED = "allowed"
    # Denied without a state transition (block marker already present, or
    # still over the limit in a window that has no block period).
    BLOCKED = "blocked"
    # This hit pushed the counter over the limit.
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class CounterHit:
    """Result of ``AbstractRateLimitStore.hit``.

    Attributes:
        status: Allowed, blocked or exceeded.
        count: Post-increment counter value (0 when an existing block
            short-circuited the increment).
        ttl_ms: Milliseconds until the governing record expires: the counter
            for allowed hits, the block marker otherwise (or the counter when
            the policy has no block period).
    """

    status: HitStatus
    count: int
    ttl_ms: int

    @property
    def ttl_seconds(self) -> int:
        return max(0, int(math.ceil(self.ttl_ms / 1000)))


class AbstractRateLimitStore(ABC):
    """Interface for the shared counter / reputation store."""

    backend_name = "abstract"

    @abstractmethod
    def hit(
        self,
        counter_key: str,
        block_key: str,
        *,
        points: int,
        window_seconds: int,
        block_seconds: int,
    ) -> CounterHit:
        """Check the block marker and count one request, atomically.

        1. If ``block_key`` exists, return BLOCKED with its remaining TTL.
        2. Increment ``counter_key``; when the new value is 1, set its expiry
           to ``window_seconds``.
        3. If the value exceeds ``points`` and ``block_seconds`` > 0, write
           ``block_key`` with that TTL and delete the counter so a fresh
           window starts once the block lapses.

        Args:
            counter_key: Key holding the window counter.
            block_key: Key holding the block marker.
            points: Requests allowed per window.
            window_seconds: Counter lifetime.
            block_seconds: Block lifetime after exceeding (0 for none).

        Returns:
            CounterHit describing the outcome.
        """
        raise NotImplementedError

    @abstractmethod
    def memberships(self, set_keys: Sequence[str], member: str) -> list[bool]:
        """Return membership of ``member`` in each set, in one round trip."""
        raise NotImplementedError

    @abstractmethod
    def add_member(self, set_key: str, member: str) -> bool:
        """Add ``member``; return True when it was not present before."""
        raise NotImplementedError

    @abstractmethod
    def remove_member(self, set_key: str, member: str) -> bool:
        """Remove ``member``; return True when it was present."""
        raise NotImplementedError

    @abstractmethod
    def members(self, set_key: str) -> set[str]:
        raise NotImplementedError

    @abstractmethod
    def record_violation(
        self,
        log_key: str,
        entry: str,
        *,
        max_entries: int,
        count_key: str,
        count_ttl_seconds: int,
    ) -> int:
        """Append to the bounded log and bump the violation counter atomically.

        The newest entry goes first; entries beyond ``max_entries`` are
        dropped. The counter's expiry is refreshed to ``count_ttl_seconds``
        on every call.

        Returns:
            The counter value after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    def recent_entries(self, log_key: str, limit: int) -> list[str]:
        """Return up to ``limit`` log entries, newest first."""
        raise NotImplementedError

    @abstractmethod
    def get_counter(self, key: str) -> int:
        """Return an integer counter value (0 when absent or expired)."""
        raise NotImplementedError

    @abstractmethod
    def hash_set(self, key: str, field: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def hash_delete(self, key: str, field: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def hash_get_all(self, key: str) -> dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys; return how many existed."""
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> bool:
        """Return True when the store answers; raise StoreUnavailableError otherwise."""
        raise NotImplementedError
