"""Request interception hooks run before any page or API handler."""

from __future__ import annotations

import logging
import re

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from ..config import RouteConfig
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
}

SUSPICIOUS_AGENT = re.compile(r"bot|crawler|spider|scraper|curl|wget", re.IGNORECASE)


def client_ip(request: Request, *, trust_forwarded: bool = True) -> str:
    """Best-effort caller address.

    Proxy headers are client controlled unless a trusted proxy overwrites
    them, so they are only read when ``trust_forwarded`` is set.
    """
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def extract_token(request: Request, cookie_name: str) -> str | None:
    """Return the session token from the bearer header or the session cookie."""
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(cookie_name) or None


class SecurityMiddleware(BaseHTTPMiddleware):
    """Per-IP rate limiting, crawler blocking and hardening headers."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        rate_limiter: RateLimiter,
        block_suspicious_agents: bool = True,
        trust_forwarded_headers: bool = True,
    ) -> None:
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self._block_agents = block_suspicious_agents
        self._trust_forwarded = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ip = client_ip(request, trust_forwarded=self._trust_forwarded)
        if not self.rate_limiter.is_allowed(ip):
            logger.info("rate limited %s on %s", ip, request.url.path)
            return PlainTextResponse("Too Many Requests", status_code=429)

        user_agent = request.headers.get("user-agent", "")
        if self._block_agents and SUSPICIOUS_AGENT.search(user_agent):
            logger.info("blocked user agent %r from %s", user_agent, ip)
            return PlainTextResponse("Forbidden", status_code=403)

        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Redirect page requests the access guard does not allow."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        cookie_name: str = "sb-access-token",
        skip_prefixes: tuple[str, ...] = RouteConfig.skip_prefixes,
    ) -> None:
        super().__init__(app)
        self._cookie_name = cookie_name
        self._skip_prefixes = skip_prefixes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self._skip_prefixes):
            return await call_next(request)

        access_control = request.app.state.access_control
        token = extract_token(request, self._cookie_name)
        decision = await run_in_threadpool(access_control.evaluate, path, token)
        if not decision.allow:
            return RedirectResponse(decision.redirect, status_code=307)
        return await call_next(request)
