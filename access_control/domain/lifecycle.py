"""Account status state machine.

Every transition is administrator-invoked; nothing moves on a timer.

=========  ============================================  ==========
action     allowed from                                  result
=========  ============================================  ==========
approve    pending_approval, approved, rejected,         approved
           suspended
reject     pending_approval, rejected, suspended         rejected
suspend    approved, suspended                           suspended
=========  ============================================  ==========

Approving an already approved account and suspending an already suspended one
are idempotent. An approved account must be suspended before it can be
rejected.
"""

from __future__ import annotations

from enum import Enum

from .account import AccountStatus
from .errors import InvalidTransition


class Action(str, Enum):
    approve = "approve"
    reject = "reject"
    suspend = "suspend"


_TRANSITIONS: dict[Action, tuple[frozenset[AccountStatus], AccountStatus]] = {
    Action.approve: (
        frozenset(AccountStatus),
        AccountStatus.approved,
    ),
    Action.reject: (
        frozenset(
            {AccountStatus.pending_approval, AccountStatus.rejected, AccountStatus.suspended}
        ),
        AccountStatus.rejected,
    ),
    Action.suspend: (
        frozenset({AccountStatus.approved, AccountStatus.suspended}),
        AccountStatus.suspended,
    ),
}


def next_status(action: Action, current: AccountStatus) -> AccountStatus:
    """Return the status ``action`` moves an account in ``current`` to."""
    sources, target = _TRANSITIONS[action]
    if current not in sources:
        raise InvalidTransition(action.value, current.value)
    return target
