"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests and the ASGI entrypoint build the same application.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from inbox_guard import __version__
from inbox_guard.api.routes import admin_router, health_router
from inbox_guard.core.config import settings
from inbox_guard.core.exception_handlers import setup_exception_handlers
from inbox_guard.core.logging import configure_logging
from inbox_guard.core.middleware import request_id_middleware
from inbox_guard.core.openapi import apply_openapi_customizations
from inbox_guard.core.rate_limit import get_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Build the limiter eagerly so bad policy overrides or an unknown
    # backend stop the process at boot instead of failing requests.
    get_rate_limiter()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Inbox Guard",
        description=(
            "Rate limiting and abuse mitigation for the chat-operations dashboard: "
            "per-endpoint budgets in a shared store, temporary blocks, automatic "
            "blacklisting of repeat offenders and operator controls."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
