"""Violation log and automatic blacklisting.

Every block transition is appended to a bounded rolling log and counted
against the identifier, whatever the limit type: abuse spread over several
endpoints is a stronger signal than one burst on a single route. Once the
count reaches the escalation threshold the identifier is blacklisted.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from inbox_guard.adapters.rate_limit.base import AbstractRateLimitStore
from inbox_guard.core.logging import hash_identifier
from inbox_guard.services.rate_limit.keys import RateLimitKeys
from inbox_guard.services.rate_limit.policies import LimitType
from inbox_guard.services.rate_limit.reputation import ReputationGate

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_THRESHOLD = 10


@dataclass(frozen=True)
class ViolationEntry:
    """One block transition."""

    identifier: str
    limit_type: str
    attempts: int
    timestamp: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "ViolationEntry | None":
        """Parse a log entry, returning None for malformed payloads."""
        try:
            data: dict[str, Any] = json.loads(raw)
            return cls(
                identifier=str(data["identifier"]),
                limit_type=str(data["limit_type"]),
                attempts=int(data.get("attempts", 0)),
                timestamp=str(data["timestamp"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("rate_limit.violation_entry_malformed")
            return None


@dataclass(frozen=True)
class ViolationOutcome:
    violation_count: int
    escalated: bool


class ViolationRecorder:
    """Appends violations and escalates repeat offenders to the blacklist.

    Attributes:
        threshold: Violations within the rolling window that trigger escalation.
        window_seconds: Expiry of the per-identifier counter, refreshed on
            every violation.
        log_size: Capacity of the violation log.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        keys: RateLimitKeys,
        reputation: ReputationGate,
        *,
        threshold: int = DEFAULT_ESCALATION_THRESHOLD,
        window_seconds: int = 86400,
        log_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._keys = keys
        self._reputation = reputation
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.log_size = log_size
        self._clock = clock

    def record(self, identifier: str, limit_type: LimitType, *, attempts: int) -> ViolationOutcome:
        """Record a block transition and escalate when the threshold is reached.

        Args:
            identifier: Canonical identifier that was blocked.
            limit_type: Limit type whose budget was exceeded.
            attempts: Counter value that triggered the block.

        Returns:
            ViolationOutcome with the updated count and whether this call
            blacklisted the identifier.

        Raises:
            StoreUnavailableError: When the store cannot be reached.
        """
        entry = ViolationEntry(
            identifier=identifier,
            limit_type=limit_type.value,
            attempts=attempts,
            timestamp=datetime.fromtimestamp(self._clock(), timezone.utc).isoformat(),
        )
        count = self._store.record_violation(
            self._keys.violations,
            entry.to_json(),
            max_entries=self.log_size,
            count_key=self._keys.violation_count(identifier),
            count_ttl_seconds=self.window_seconds,
        )
        identifier_hash = hash_identifier(identifier)
        logger.warning(
            "rate_limit.blocked",
            extra={
                "identifier_hash": identifier_hash,
                "limit_type": limit_type.value,
                "attempts": attempts,
                "violation_count": count,
            },
        )

        escalated = False
        if count >= self.threshold:
            escalated = self._reputation.blacklist_add(
                identifier, reason=f"auto_escalation: {count} violations"
            )
            if escalated:
                logger.error(
                    "rate_limit.auto_blacklisted",
                    extra={
                        "identifier_hash": identifier_hash,
                        "violation_count": count,
                        "threshold": self.threshold,
                        "limit_type": limit_type.value,
                    },
                )
        return ViolationOutcome(violation_count=count, escalated=escalated)

    def recent(self, limit: int) -> list[ViolationEntry]:
        entries = (ViolationEntry.from_json(raw) for raw in self._store.recent_entries(self._keys.violations, limit))
        return [entry for entry in entries if entry is not None]

    def violation_count(self, identifier: str) -> int:
        return self._store.get_counter(self._keys.violation_count(identifier))

    def clear(self, identifier: str) -> None:
        self._store.delete(self._keys.violation_count(identifier))
