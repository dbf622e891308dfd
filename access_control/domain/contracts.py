"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass

from .account import AccountStatus, Role


@dataclass(slots=True)
class RegisterAccountInput:
    """Validated inputs required to create a profile at signup."""

    email: str
    role: Role
    full_name: str | None = None
    organization: str | None = None


@dataclass(slots=True)
class AccountFilters:
    """Optional filters and paging for the admin account listing."""

    status: AccountStatus | None = None
    role: Role | None = None
    limit: int = 50
    offset: int = 0


@dataclass(slots=True)
class AccountStats:
    total: int
    pending: int
    approved: int
    rejected: int
    suspended: int
    by_role: dict[str, int]
