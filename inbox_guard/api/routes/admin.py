from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from inbox_guard.core.auth import verify_admin_key
from inbox_guard.core.logging import hash_identifier
from inbox_guard.core.rate_limit import get_admin_service
from inbox_guard.schemas.rate_limit import (
    AdminActionRequest,
    AdminActionResponse,
    RateLimitStatsOut,
    RateLimitStatsResponse,
    ViolationEntryOut,
)
from inbox_guard.services.rate_limit.admin import AdminControlService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(verify_admin_key)])

AdminService = Annotated[AdminControlService, Depends(get_admin_service)]


@router.get(
    "/admin/rate-limit",
    response_model=RateLimitStatsResponse,
)
def get_rate_limit_stats(service: AdminService) -> RateLimitStatsResponse:
    """Return recent violations and the reputation lists.

    Raises:
        StoreUnavailableError: 503 when the counter store cannot be reached.
    """
    stats = service.get_stats()
    return RateLimitStatsResponse(
        stats=RateLimitStatsOut(
            recent_violations=[
                ViolationEntryOut(
                    identifier=entry.identifier,
                    limit_type=entry.limit_type,
                    attempts=entry.attempts,
                    timestamp=entry.timestamp,
                )
                for entry in stats.recent_violations
            ],
            whitelist=stats.whitelist,
            blacklist=stats.blacklist,
            violation_count=stats.violation_count,
            whitelist_count=stats.whitelist_count,
            blacklist_count=stats.blacklist_count,
            blacklist_reasons=stats.blacklist_reasons,
        )
    )


@router.post(
    "/admin/rate-limit",
    response_model=AdminActionResponse,
)
def manage_rate_limit(body: AdminActionRequest, service: AdminService) -> AdminActionResponse:
    """Reset limits or edit the whitelist/blacklist for one identifier.

    Actions: ``reset``, ``whitelist_add``, ``whitelist_remove``,
    ``blacklist_add``, ``blacklist_remove``. Unknown actions are rejected with
    422 by request validation.
    """
    identifier = body.identifier.strip()

    if body.action == "reset":
        changed = service.reset(identifier, body.limit_type) > 0
        scope = body.limit_type.value if body.limit_type else "all limit types"
        message = f"Rate limit reset for {identifier} ({scope})"
    elif body.action == "whitelist_add":
        changed = service.whitelist_add(identifier)
        message = f"Added {identifier} to whitelist"
    elif body.action == "whitelist_remove":
        changed = service.whitelist_remove(identifier)
        message = f"Removed {identifier} from whitelist"
    elif body.action == "blacklist_add":
        changed = service.blacklist_add(identifier)
        message = f"Added {identifier} to blacklist"
    else:
        changed = service.blacklist_remove(identifier, reset_violations=body.reset_violations)
        message = f"Removed {identifier} from blacklist"

    logger.info(
        "rate_limit.admin.action",
        extra={
            "action": body.action,
            "identifier_hash": hash_identifier(identifier),
            "changed": changed,
        },
    )
    return AdminActionResponse(message=message, changed=changed)
