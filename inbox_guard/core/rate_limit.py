"""Rate limiting dependency for FastAPI routes.

This module wires the limiter into the HTTP layer and owns the response
contract:

- ALLOW: ``X-RateLimit-Limit``, ``X-RateLimit-Remaining`` and
  ``X-RateLimit-Reset`` (UNIX epoch seconds) are attached to the response
  and the handler runs.
- DENY: HTTP 429 with the same headers plus ``Retry-After``; the handler
  never runs. Quota exhaustion, an active block and blacklisting all look
  the same to the client, and the identifier is never echoed back.

Usage:
    @router.post("/messages", dependencies=[Depends(rate_limited(LimitType.MESSAGE_SEND))])
    async def send_message(...): ...
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from inbox_guard.adapters.rate_limit.factory import create_rate_limit_store
from inbox_guard.core.config import Settings, settings
from inbox_guard.core.errors import RateLimitExceededError
from inbox_guard.services.rate_limit.admin import AdminControlService
from inbox_guard.services.rate_limit.identifiers import RequestContext
from inbox_guard.services.rate_limit.keys import RateLimitKeys
from inbox_guard.services.rate_limit.limiter import RateLimiter, Verdict
from inbox_guard.services.rate_limit.policies import LimitType, PolicyRegistry
from inbox_guard.services.rate_limit.reputation import ReputationGate
from inbox_guard.services.rate_limit.violations import ViolationRecorder

logger = logging.getLogger(__name__)


_limiter: RateLimiter | None = None


def build_rate_limiter(cfg: Settings | None = None) -> RateLimiter:
    """Assemble a limiter and its collaborators from settings.

    Raises:
        ConfigurationError: On an unknown backend or invalid policy overrides.
    """
    cfg = cfg or settings
    rl = cfg.rate_limit
    store = create_rate_limit_store(cfg)
    keys = RateLimitKeys(prefix=rl.key_prefix)
    reputation = ReputationGate(store, keys)
    violations = ViolationRecorder(
        store,
        keys,
        reputation,
        threshold=rl.escalation_threshold,
        window_seconds=rl.violation_window_seconds,
        log_size=rl.violation_log_size,
    )
    limiter = RateLimiter(
        store,
        registry=PolicyRegistry.with_overrides(rl.policy_overrides),
        keys=keys,
        reputation=reputation,
        violations=violations,
        blacklist_retry_after_seconds=rl.blacklist_retry_after_seconds,
    )
    logger.info(
        "rate_limit.configured",
        extra={
            "backend": store.backend_name,
            "policies": len(limiter.registry),
            "escalation_threshold": rl.escalation_threshold,
        },
    )
    return limiter


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter, building it on first use.

    Tests replace it through ``app.dependency_overrides[get_rate_limiter]``.
    """

    global _limiter

    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter


def get_admin_service(
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> AdminControlService:
    return AdminControlService(
        limiter,
        recent_violations_limit=settings.rate_limit.recent_violations_limit,
    )


def build_rate_limit_headers(verdict: Verdict, *, include_limits: bool = True) -> dict[str, str]:
    """Translate a verdict into response headers.

    Args:
        verdict: Limiter outcome.
        include_limits: Emit the X-RateLimit-* headers. ``Retry-After`` is
            always emitted on denials.

    Returns:
        Header mapping ready to merge into the response.
    """
    headers: dict[str, str] = {}
    if include_limits:
        headers["X-RateLimit-Limit"] = str(verdict.limit)
        headers["X-RateLimit-Remaining"] = str(verdict.remaining if verdict.allowed else 0)
        headers["X-RateLimit-Reset"] = str(verdict.reset_at)
    if not verdict.allowed:
        headers["Retry-After"] = str(max(1, verdict.retry_after or 0))
    return headers


def build_denial_error(verdict: Verdict, *, include_limits: bool = True) -> RateLimitExceededError:
    retry_after = max(1, verdict.retry_after or 0)
    return RateLimitExceededError(
        code="rate_limited",
        message=f"Rate limit exceeded. Try again in {retry_after} seconds.",
        details={"limit_type": verdict.limit_type.value, "retry_after": retry_after},
        headers=build_rate_limit_headers(verdict, include_limits=include_limits),
    )


def _retrieve_abandoned_result(evaluation: asyncio.Future) -> None:
    """Mark a shielded evaluation's outcome as seen.

    When the request was cancelled nobody awaits the evaluation, so an error
    raised inside it is logged here instead of by the event loop's
    "never retrieved" warning. Awaited evaluations still re-raise to the
    caller.
    """
    if evaluation.cancelled():
        return
    exc = evaluation.exception()
    if exc is not None:
        logger.debug("rate_limit.evaluation_failed", extra={"error_type": type(exc).__name__})


def rate_limited(limit_type: LimitType | str) -> Callable[..., Awaitable[Verdict | None]]:
    """Build a FastAPI dependency enforcing ``limit_type``.

    The limit type is validated here, so a misspelled name fails when the
    route module is imported rather than on the first request.

    Args:
        limit_type: Endpoint class the route belongs to.

    Returns:
        Async dependency returning the Verdict (None when limiting is disabled).

    Raises:
        ConfigurationError: If ``limit_type`` is unknown.
    """
    parsed = LimitType.parse(limit_type)

    async def enforce_rate_limit(
        request: Request,
        response: Response,
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> Verdict | None:
        if not settings.rate_limit.enabled:
            return None

        context = RequestContext.from_request(
            request,
            trust_proxy_headers=settings.rate_limit.trust_proxy_headers,
        )
        # Shielded so a client disconnect cannot cancel an increment in flight:
        # the attempt is what counts, not whether its response was delivered.
        evaluation = asyncio.ensure_future(run_in_threadpool(limiter.evaluate, context, parsed))
        evaluation.add_done_callback(_retrieve_abandoned_result)
        verdict = await asyncio.shield(evaluation)

        include_limits = settings.rate_limit.include_headers
        if verdict.allowed:
            response.headers.update(build_rate_limit_headers(verdict, include_limits=include_limits))
            return verdict

        raise build_denial_error(verdict, include_limits=include_limits)

    enforce_rate_limit.__name__ = f"enforce_rate_limit_{parsed.value.lower()}"
    return enforce_rate_limit
