"""Shared schema exports."""

from .events import AccountRegistered, AccountState, AccountStatusChanged

__all__ = [
    "AccountRegistered",
    "AccountState",
    "AccountStatusChanged",
]
