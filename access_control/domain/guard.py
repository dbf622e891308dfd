"""Route guard and capability resolution for inbound requests."""

from __future__ import annotations

import logging
from typing import Protocol

from prometheus_client import Counter

from ..config import RouteConfig
from ..security.tokens import Identity, IdentityProvider
from .account import Account, AccountStatus, Role
from .capabilities import Capability, capabilities
from .errors import AccountNotFound
from .routing import RouteDecision, classify_path, login_redirect

logger = logging.getLogger(__name__)

DEGRADED_DECISIONS = Counter(
    "access_guard_degraded_total",
    "Route decisions that fell back to allow because the account could not be loaded.",
)
REDIRECTS = Counter(
    "access_guard_redirects_total",
    "Route decisions that redirected the caller.",
    ["target"],
)


class AccountReader(Protocol):
    def get_account(self, identity: str) -> Account | None: ...


class AccessControl:
    """Answers whether a route is reachable and what the UI may show."""

    def __init__(
        self,
        repository: AccountReader,
        identity_provider: IdentityProvider,
        routes: RouteConfig,
    ) -> None:
        self._repository = repository
        self._identity_provider = identity_provider
        self._routes = routes

    @property
    def routes(self) -> RouteConfig:
        return self._routes

    def resolve_identity(self, token: str | None) -> Identity | None:
        return self._identity_provider.resolve_identity(token)

    def load_account(self, identity: Identity | str) -> Account:
        """Fetch the profile for ``identity``; raises ``AccountNotFound`` when absent."""
        identity_id = identity.identity_id if isinstance(identity, Identity) else identity
        account = self._repository.get_account(identity_id)
        if account is None:
            raise AccountNotFound(identity_id)
        return account

    def route_decision(self, path: str, identity: Identity | None) -> RouteDecision:
        """Decide whether ``path`` may be served to ``identity``.

        The checks run in a fixed order: anonymous access to protected routes,
        signed-in access to auth routes, then the account status and admin
        checks. When the account cannot be loaded for any reason other than a
        missing row the request is allowed and a degraded event is recorded.
        """
        routes = self._routes
        category = classify_path(path, routes)

        if category.protected and identity is None:
            return self._redirect(login_redirect(path, routes), routes.login_path)

        if category.auth and identity is not None:
            return self._redirect(routes.settings_path)

        if identity is None or not (category.protected or category.public):
            return RouteDecision.allowed()

        try:
            account = self.load_account(identity)
        except AccountNotFound:
            return self._redirect(routes.pending_approval_path)
        except Exception:
            DEGRADED_DECISIONS.inc()
            logger.warning(
                "degraded route decision: allowing %s for %s, account lookup failed",
                path,
                identity.identity_id,
                exc_info=True,
            )
            return RouteDecision.allowed(degraded=True)

        if account.status is AccountStatus.pending_approval:
            return self._redirect(routes.pending_approval_path)
        if account.status is AccountStatus.rejected:
            return self._redirect(routes.rejected_path)
        if account.status is AccountStatus.suspended:
            return self._redirect(routes.suspended_path)
        if path.startswith(routes.admin_prefix) and account.role is not Role.admin:
            return self._redirect(routes.settings_path)
        return RouteDecision.allowed()

    def evaluate(self, path: str, token: str | None) -> RouteDecision:
        """Resolve ``token`` and evaluate the guard for ``path`` in one step."""
        return self.route_decision(path, self.resolve_identity(token))

    def capabilities_for(self, identity: Identity | None) -> frozenset[Capability]:
        """Capability set for a caller; anonymous callers get the public set.

        A signed-in caller without a profile gets nothing. Store faults
        propagate so the API can report them.
        """
        if identity is None:
            return capabilities(None)
        try:
            account = self.load_account(identity)
        except AccountNotFound:
            return frozenset()
        return capabilities(account)

    def _redirect(self, location: str, target: str | None = None) -> RouteDecision:
        REDIRECTS.labels(target=target or location).inc()
        return RouteDecision.redirect_to(location)
