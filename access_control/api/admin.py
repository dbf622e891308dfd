"""Administrator endpoints for the approval workflow."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..domain.account import Account, AccountStatus, Role
from ..domain.contracts import AccountFilters
from ..domain.errors import AccessControlError
from ..domain.service import AccountService
from .routes import AccountResponse, current_account, get_service, http_error_from_domain_error

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class AccountListResponse(BaseModel):
    items: list[AccountResponse]
    limit: int
    offset: int


class RejectRequest(BaseModel):
    reason: str = Field(..., max_length=1000)


class SuspendRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class StatsResponse(BaseModel):
    """Account counts shown on the admin dashboard."""

    total: int
    pending: int
    approved: int
    rejected: int
    suspended: int
    by_role: dict[str, int]


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


def _account_list(accounts: list[Account], limit: int, offset: int) -> AccountListResponse:
    return AccountListResponse(
        items=[AccountResponse.from_domain(account) for account in accounts],
        limit=limit,
        offset=offset,
    )


@router.get("/approvals", response_model=AccountListResponse)
def list_pending_approvals(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    """Accounts waiting for approval, oldest first."""
    try:
        accounts = service.list_pending_approvals(actor, limit=limit, offset=offset)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return _account_list(accounts, limit, offset)


@router.get("/accounts", response_model=AccountListResponse)
def list_accounts(
    status_filter: AccountStatus | None = Query(default=None, alias="status"),
    role: Role | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    try:
        accounts = service.list_accounts(
            actor,
            AccountFilters(status=status_filter, role=role, limit=limit, offset=offset),
        )
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return _account_list(accounts, limit, offset)


@router.post("/accounts/{identity}/approve", response_model=AccountResponse)
def approve_account(
    identity: str,
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        account = service.approve(actor, identity)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.post("/accounts/{identity}/reject", response_model=AccountResponse)
def reject_account(
    identity: str,
    payload: RejectRequest,
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        account = service.reject(actor, identity, payload.reason)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.post("/accounts/{identity}/suspend", response_model=AccountResponse)
def suspend_account(
    identity: str,
    payload: SuspendRequest | None = None,
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        account = service.suspend(actor, identity, payload.reason if payload else None)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> StatsResponse:
    try:
        stats = service.get_stats(actor)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return StatsResponse(
        total=stats.total,
        pending=stats.pending,
        approved=stats.approved,
        rejected=stats.rejected,
        suspended=stats.suspended,
        by_role=stats.by_role,
    )


@router.get("/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    actor: Account = Depends(current_account),
    service: AccountService = Depends(get_service),
) -> AuditLogResponse:
    """Return paginated approval workflow events with optional filtering."""
    try:
        records, next_cursor = service.list_audit_events(
            actor,
            account_id=account_id,
            event_type=event_type,
            limit=limit,
            cursor=cursor,
        )
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc

    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)
