"""Whitelist / blacklist membership.

Both sets are keyed by identifier only, so a listing applies to every limit
type. Operator trust (whitelist) outranks blacklisting, including automatic
escalation.
"""

from __future__ import annotations

import logging
from enum import Enum

from inbox_guard.adapters.rate_limit.base import AbstractRateLimitStore
from inbox_guard.core.logging import hash_identifier
from inbox_guard.services.rate_limit.keys import RateLimitKeys

logger = logging.getLogger(__name__)


class Reputation(str, Enum):
    TRUSTED = "trusted"
    BANNED = "banned"
    NEUTRAL = "neutral"


class ReputationGate:
    """Reads and mutates the reputation sets."""

    def __init__(self, store: AbstractRateLimitStore, keys: RateLimitKeys) -> None:
        self._store = store
        self._keys = keys

    def check(self, identifier: str) -> Reputation:
        """Classify an identifier with a single store round trip.

        Raises:
            StoreUnavailableError: When the store cannot be reached.
        """
        whitelisted, blacklisted = self._store.memberships(
            [self._keys.whitelist, self._keys.blacklist], identifier
        )
        if whitelisted:
            return Reputation.TRUSTED
        if blacklisted:
            return Reputation.BANNED
        return Reputation.NEUTRAL

    def is_whitelisted(self, identifier: str) -> bool:
        return self.check(identifier) is Reputation.TRUSTED

    def is_blacklisted(self, identifier: str) -> bool:
        """True when the identifier is blacklisted and not whitelisted."""
        return self.check(identifier) is Reputation.BANNED

    def whitelist_add(self, identifier: str) -> bool:
        added = self._store.add_member(self._keys.whitelist, identifier)
        logger.info(
            "rate_limit.whitelist_add",
            extra={"identifier_hash": hash_identifier(identifier), "changed": added},
        )
        return added

    def whitelist_remove(self, identifier: str) -> bool:
        removed = self._store.remove_member(self._keys.whitelist, identifier)
        logger.info(
            "rate_limit.whitelist_remove",
            extra={"identifier_hash": hash_identifier(identifier), "changed": removed},
        )
        return removed

    def blacklist_add(self, identifier: str, *, reason: str) -> bool:
        """Blacklist an identifier and remember why.

        Returns:
            True when the identifier was not blacklisted before.
        """
        added = self._store.add_member(self._keys.blacklist, identifier)
        if added:
            self._store.hash_set(self._keys.blacklist_reasons, identifier, reason)
        logger.info(
            "rate_limit.blacklist_add",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "changed": added,
                "reason": reason,
            },
        )
        return added

    def blacklist_remove(self, identifier: str) -> bool:
        removed = self._store.remove_member(self._keys.blacklist, identifier)
        self._store.hash_delete(self._keys.blacklist_reasons, identifier)
        logger.info(
            "rate_limit.blacklist_remove",
            extra={"identifier_hash": hash_identifier(identifier), "changed": removed},
        )
        return removed

    def whitelist(self) -> list[str]:
        return sorted(self._store.members(self._keys.whitelist))

    def blacklist(self) -> list[str]:
        return sorted(self._store.members(self._keys.blacklist))

    def blacklist_reasons(self) -> dict[str, str]:
        return self._store.hash_get_all(self._keys.blacklist_reasons)
