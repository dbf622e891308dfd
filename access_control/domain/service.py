"""Account service orchestrating signup, the approval workflow and auditing."""

from __future__ import annotations

from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timezone
import json
import logging
from typing import Callable, Optional, Tuple

from ..repository import AccountRepository, AuditEntry, AuditLogRecord
from ..schemas import AccountRegistered, AccountStatusChanged
from .account import Account, AccountStatus
from .capabilities import Capability, has_capability
from .contracts import AccountFilters, AccountStats, RegisterAccountInput
from .errors import AccountNotFound, Forbidden, InvalidArgument
from .lifecycle import Action, next_status

logger = logging.getLogger(__name__)


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, 100))


class AccountService:
    """Approval workflows backed by the account store."""

    def __init__(
        self,
        repository: AccountRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Store dependencies used to orchestrate persistence and auditing."""
        self._repository = repository
        self._clock = clock

    def register(self, identity: str, payload: RegisterAccountInput) -> Tuple[Account, bool]:
        """Create the pending profile for ``identity`` or replay the existing one."""
        if not payload.email.strip():
            raise InvalidArgument("email is required")
        event = AccountRegistered(
            account_id=identity,
            email=payload.email,
            role=payload.role.value,
            occurred_at=self._clock(),
        )
        account, created = self._repository.create_account(
            identity,
            payload,
            audit=AuditEntry(
                event_type="account.registered",
                actor=identity,
                metadata=event.model_dump(mode="json"),
            ),
        )
        if created:
            logger.info("account %s registered with role %s", account.identity, account.role.value)
        return account, created

    def get_account(self, identity: str) -> Account | None:
        return self._repository.get_account(identity)

    def approve(self, actor: Account, target_identity: str) -> Account:
        """Approve ``target_identity``; approving twice refreshes the audit fields."""
        self._require_admin(actor)
        target = self._load_target(target_identity)
        return self._transition(
            "account.approved",
            actor,
            target,
            next_status(Action.approve, target.status),
            approved_by=actor.identity,
            approved_at=self._clock(),
            rejection_reason=None,
        )

    def reject(self, actor: Account, target_identity: str, reason: str) -> Account:
        """Reject ``target_identity`` with a mandatory reason."""
        self._require_admin(actor)
        reason = (reason or "").strip()
        if not reason:
            raise InvalidArgument("rejection reason is required")
        self._forbid_self_action(actor, target_identity, Action.reject)
        target = self._load_target(target_identity)
        return self._transition(
            "account.rejected",
            actor,
            target,
            next_status(Action.reject, target.status),
            approved_by=None,
            approved_at=None,
            rejection_reason=reason,
            reason=reason,
        )

    def suspend(self, actor: Account, target_identity: str, reason: str | None = None) -> Account:
        """Suspend an approved account, keeping its approval audit fields."""
        self._require_admin(actor)
        self._forbid_self_action(actor, target_identity, Action.suspend)
        target = self._load_target(target_identity)
        return self._transition(
            "account.suspended",
            actor,
            target,
            next_status(Action.suspend, target.status),
            approved_by=target.approved_by,
            approved_at=target.approved_at,
            rejection_reason=None,
            reason=reason,
        )

    def list_pending_approvals(self, actor: Account, *, limit: int = 50, offset: int = 0) -> list[Account]:
        self._require_admin(actor)
        return self._repository.list_by_status(
            AccountStatus.pending_approval,
            limit=_clamp_limit(limit),
            offset=max(0, offset),
        )

    def list_accounts(self, actor: Account, filters: AccountFilters | None = None) -> list[Account]:
        self._require_admin(actor)
        filters = filters or AccountFilters()
        return self._repository.list_all(
            AccountFilters(
                status=filters.status,
                role=filters.role,
                limit=_clamp_limit(filters.limit),
                offset=max(0, filters.offset),
            )
        )

    def get_stats(self, actor: Account) -> AccountStats:
        self._require_admin(actor)
        return self._repository.count_stats()

    def list_audit_events(
        self,
        actor: Account,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit log records with optional filters and cursor pagination."""
        self._require_admin(actor)
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._repository.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            limit=_clamp_limit(limit),
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _require_admin(self, actor: Account) -> None:
        if not has_capability(actor, Capability.manage_users):
            logger.info("account %s denied an administrative action", actor.identity)
            raise Forbidden("administrator approval rights required")

    def _forbid_self_action(self, actor: Account, target_identity: str, action: Action) -> None:
        if actor.identity == target_identity:
            raise InvalidArgument(f"administrators cannot {action.value} their own account")

    def _load_target(self, identity: str) -> Account:
        target = self._repository.get_account(identity)
        if target is None:
            raise AccountNotFound(identity)
        return target

    def _transition(
        self,
        event_type: str,
        actor: Account,
        target: Account,
        status: AccountStatus,
        *,
        approved_by: str | None,
        approved_at: datetime | None,
        rejection_reason: str | None,
        reason: str | None = None,
    ) -> Account:
        """Apply a status change and its audit row as one conditional write."""
        event = AccountStatusChanged(
            account_id=target.identity,
            previous_state=target.status.value,
            state=status.value,
            actor=actor.identity,
            occurred_at=self._clock(),
            reason=reason,
        )
        updated = self._repository.update_status(
            target.identity,
            expected=target.status,
            status=status,
            approved_by=approved_by,
            approved_at=approved_at,
            rejection_reason=rejection_reason,
            audit=AuditEntry(
                event_type=event_type,
                actor=actor.identity,
                metadata=event.model_dump(mode="json"),
            ),
        )
        logger.info(
            "%s: %s moved %s -> %s by %s",
            event_type,
            updated.identity,
            target.status.value,
            updated.status.value,
            actor.identity,
        )
        return updated

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            audit_id = int(data["audit_id"])
            return created_at, audit_id
        except Exception as exc:
            raise InvalidArgument("invalid cursor") from exc
