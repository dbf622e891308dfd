"""Error taxonomy shared by the guard, the account service and the HTTP layer."""

from __future__ import annotations


class AccessControlError(Exception):
    """Base class for every domain error raised by the access service."""


class AccountNotFound(AccessControlError, LookupError):
    """No profile row exists for the identity."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"account not found: {identity}")
        self.identity = identity


class Forbidden(AccessControlError, PermissionError):
    """The acting account lacks the rights for the requested operation."""


class InvalidArgument(AccessControlError, ValueError):
    """A caller supplied value failed validation."""


class InvalidTransition(AccessControlError):
    """The requested lifecycle action is not permitted from the current status."""

    def __init__(self, action: str, current: str) -> None:
        super().__init__(f"cannot {action} an account in status {current}")
        self.action = action
        self.current = current


class TransitionConflict(AccessControlError):
    """The account status changed between read and compare-and-swap update."""

    def __init__(self, identity: str, expected: str) -> None:
        super().__init__(f"account {identity} is no longer in status {expected}")
        self.identity = identity
        self.expected = expected


class StoreUnavailable(AccessControlError):
    """The account store timed out, was unreachable or returned malformed data."""
