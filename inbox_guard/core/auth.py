"""Operator authentication for the admin surface.

Operator keys are validated against a comma-separated list from environment
variables. End-user authentication is not handled here: the session layer in
front of this service sets ``request.state.user_id``, which the limiter reads
to key budgets per user.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from inbox_guard.core.config import settings
from inbox_guard.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ") == {"key1", "key2", "key3"}
        True
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _key_hash(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def validate_admin_key(provided_key: str) -> None:
    """Validate that the provided operator key matches a configured key.

    Args:
        provided_key: Key to validate.

    Raises:
        AuthenticationAppError: If the key is invalid or no keys are configured
            while authentication is required.
    """
    if not settings.app.admin_auth_required:
        return

    valid_keys = parse_api_keys(settings.app.admin_api_keys)

    if not valid_keys:
        logger.error(
            "admin_key_validation_failed",
            extra={"reason": "admin_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="admin_keys_not_configured",
            message="Admin authentication is enabled but no admin keys are configured",
            details={"hint": "Set APP_ADMIN_API_KEYS or disable with APP_ADMIN_AUTH_REQUIRED=false"},
        )

    # Constant-time comparison against every configured key
    matched = False
    for key in valid_keys:
        if hmac.compare_digest(provided_key.encode(), key.encode()):
            matched = True
    if not matched:
        logger.warning(
            "admin_key_validation_failed",
            extra={"reason": "invalid_admin_key", "admin_key_hash": _key_hash(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_admin_key",
            message="Invalid or missing admin key",
        )


async def verify_admin_key(
    x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None,
) -> None:
    """FastAPI dependency guarding operator-only routes.

    Usage:
        @router.get("/admin/rate-limit", dependencies=[Depends(verify_admin_key)])

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.admin_auth_required:
        logger.debug("admin_auth.skipped", extra={"reason": "admin_auth_required_false"})
        return

    if not x_admin_key:
        logger.warning("admin_auth.missing_key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing admin key. Provide X-Admin-Key header.",
        )

    try:
        validate_admin_key(x_admin_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    logger.info("admin_auth.success", extra={"admin_key_hash": _key_hash(x_admin_key)})
