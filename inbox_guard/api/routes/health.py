from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from inbox_guard.core.errors import StoreUnavailableError
from inbox_guard.core.rate_limit import get_rate_limiter
from inbox_guard.services.rate_limit.limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check used by load balancers.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
def readiness_check(limiter: Annotated[RateLimiter, Depends(get_rate_limiter)]) -> JSONResponse:
    """Readiness check reporting whether abuse protection is effective.

    While the store is down the limiter fails open, so the API keeps serving
    but protection is off; this endpoint turns that into a 503 for alerting.
    ``fail_open_total`` counts requests admitted without a check since start.
    """

    payload = {
        "backend": limiter.store.backend_name,
        "fail_open_total": limiter.fail_open_total,
    }
    try:
        limiter.store.ping()
    except StoreUnavailableError:
        logger.error("health.store_unavailable", extra=payload)
        return JSONResponse(status_code=503, content={"status": "degraded", "store": "unavailable", **payload})
    return JSONResponse(status_code=200, content={"status": "ok", "store": "ok", **payload})
