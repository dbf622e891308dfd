"""Path classification and route decision value types."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from ..config import RouteConfig


@dataclass(frozen=True, slots=True)
class PathCategories:
    protected: bool
    auth: bool
    public: bool


@dataclass(frozen=True, slots=True)
class RouteDecision:
    """Outcome of evaluating the guard: allow, or redirect to ``redirect``."""

    redirect: str | None = None
    degraded: bool = False

    @property
    def allow(self) -> bool:
        return self.redirect is None

    @classmethod
    def allowed(cls, *, degraded: bool = False) -> "RouteDecision":
        return cls(redirect=None, degraded=degraded)

    @classmethod
    def redirect_to(cls, target: str) -> "RouteDecision":
        return cls(redirect=target)


def classify_path(path: str, config: RouteConfig) -> PathCategories:
    """Classify ``path``; protected and auth use prefix matching, public is exact."""
    return PathCategories(
        protected=any(path.startswith(prefix) for prefix in config.protected_prefixes),
        auth=any(path.startswith(prefix) for prefix in config.auth_prefixes),
        public=path in config.public_paths,
    )


def login_redirect(path: str, config: RouteConfig) -> str:
    return f"{config.login_path}?{urlencode({'redirectTo': path})}"


def safe_redirect_target(redirect_to: str | None, config: RouteConfig) -> str:
    """Return where to send a user after login.

    Only local absolute paths are honoured; anything else (missing, relative,
    scheme-relative or absolute URLs) falls back to the settings page.
    """
    if not redirect_to or not redirect_to.startswith("/") or redirect_to.startswith("//"):
        return config.settings_path
    if "\\" in redirect_to:
        return config.settings_path
    return redirect_to
