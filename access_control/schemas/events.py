"""Account lifecycle event contracts written to the audit log."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class AccountState(str, Enum):
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"
    suspended = "suspended"


class AccountRegistered(BaseModel):
    account_id: str
    email: str
    role: str
    occurred_at: datetime
    version: str = "v1"


class AccountStatusChanged(BaseModel):
    account_id: str
    previous_state: AccountState
    state: AccountState
    actor: str
    occurred_at: datetime
    reason: str | None = None

    class Config:
        populate_by_name = True
        use_enum_values = True
