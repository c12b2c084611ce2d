"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis pool, database engine).
Middleware, CORS, error handlers and routers all registered here.

Importing this module loads settings; without PEERHIRE_JWT_SECRET the
import fails and the server never starts.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peerhire import __version__
from peerhire.api import api_router
from peerhire.config import settings
from peerhire.errors import install_error_handlers

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "peerhire.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        demo_mode=settings.demo_mode,
        contract_wallets=bool(settings.eth_rpc_url),
    )
    if settings.demo_mode:
        logger.warning("peerhire.demo_mode_enabled")

    from peerhire.db.redis import close_redis, init_redis
    try:
        await init_redis()
        logger.info("peerhire.redis_connected")
    except Exception as e:
        logger.warning("peerhire.redis_unavailable", error=str(e))
        # Redis is optional, the app works without rate limiting

    yield

    logger.info("peerhire.shutdown")
    await close_redis()

    from peerhire.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="PeerHire Identity",
        description="Password and wallet authentication, sessions and role gating",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware ────────────────────────────────────────────
    # Registered innermost first; the last one added sees the request first.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from peerhire.middleware.rate_limit import RateLimitMiddleware
    from peerhire.middleware.request_id import RequestIdMiddleware
    from peerhire.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
        max_age=86400,
    )

    install_error_handlers(app)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: peerhire.main:app)
app = create_app()
