from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


class AccountStatus(str, Enum):
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"
    suspended = "suspended"


class Role(str, Enum):
    public = "public"
    operator = "operator"
    laboratory = "laboratory"
    epd_staff = "epd_staff"
    epa_staff = "epa_staff"
    admin = "admin"


# Roles from the retired researcher/regulator/consultant vocabulary, accepted
# only when reading stored rows.
LEGACY_ROLE_ALIASES: dict[str, Role] = {
    "researcher": Role.public,
    "consultant": Role.public,
    "regulator": Role.epd_staff,
}


def parse_role(value: str) -> Role:
    """Map a stored role string onto the canonical ``Role`` enumeration.

    Legacy role names are translated through ``LEGACY_ROLE_ALIASES`` and logged
    so the remaining rows can be migrated. Unknown names raise ``ValueError``.
    """
    try:
        return Role(value)
    except ValueError:
        alias = LEGACY_ROLE_ALIASES.get(value)
        if alias is None:
            raise
        logger.warning("legacy role %r read from store, treating as %r", value, alias.value)
        return alias


@dataclass(slots=True)
class Account:
    """Stored user profile used for every authorization decision."""

    identity: str
    email: str
    role: Role
    status: AccountStatus
    created_at: datetime
    updated_at: datetime
    full_name: str | None = None
    organization: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def is_approved(self) -> bool:
        return self.status is AccountStatus.approved

    @property
    def is_admin(self) -> bool:
        """Admin rights require both the admin role and an approved account."""
        return self.role is Role.admin and self.status is AccountStatus.approved
