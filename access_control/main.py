"""FastAPI application wiring for the access service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.admin import router as admin_router
from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.guard import AccessControl
from .domain.service import AccountService
from .repository import AccountRepository
from .security.middleware import RouteGuardMiddleware, SecurityMiddleware
from .security.rate_limiter import FixedWindowRateLimiter, RateLimiter
from .security.redis_rate_limiter import RedisFixedWindowRateLimiter
from .security.tokens import JwtIdentityProvider

logger = logging.getLogger(__name__)

settings = get_settings()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisFixedWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return FixedWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    timeout_ms = int(settings.store_timeout_seconds * 1000)
    pool = ConnectionPool(
        settings.database_url,
        open=False,
        timeout=settings.store_timeout_seconds,
        kwargs={
            "connect_timeout": max(1, int(settings.store_timeout_seconds)),
            "options": f"-c statement_timeout={timeout_ms}",
        },
    )
    pool.open()
    app.state.pool = pool
    repository = AccountRepository(pool, timeout=settings.store_timeout_seconds)
    app.state.account_service = AccountService(repository)
    app.state.access_control = AccessControl(
        repository,
        JwtIdentityProvider.from_settings(),
        settings.route_config(),
    )
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# outermost last: security checks run before the route guard
app.add_middleware(
    RouteGuardMiddleware,
    cookie_name=settings.session_cookie,
    skip_prefixes=settings.route_config().skip_prefixes,
)
app.add_middleware(
    SecurityMiddleware,
    rate_limiter=build_rate_limiter(settings),
    block_suspicious_agents=settings.block_suspicious_agents,
    trust_forwarded_headers=settings.trust_forwarded_headers,
)
# CORS for the Next.js frontend in local dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
app.include_router(admin_router)
