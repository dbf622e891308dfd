from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from access_control.api import admin, routes
from access_control.config import RouteConfig
from access_control.domain.account import Account, AccountStatus, Role
from access_control.domain.contracts import AccountFilters, AccountStats, RegisterAccountInput
from access_control.domain.errors import AccountNotFound, TransitionConflict
from access_control.domain.guard import AccessControl
from access_control.domain.service import AccountService
from access_control.repository import AuditEntry
from access_control.security.tokens import JwtIdentityProvider

JWT_SECRET = "test-secret"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_token(identity: str, *, email: str | None = None, expires_in: int = 3600, secret: str = JWT_SECRET) -> str:
    now = int(time.time())
    payload = {
        "sub": identity,
        "aud": "authenticated",
        "email": email or f"{identity}@example.com",
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(identity: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(identity)}"}


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.audit_log: list[FakeAuditLogRecord] = []
        self._audit_seq = 0
        self.fail_with: Exception | None = None
        self._tick = 0

    def seed(
        self,
        identity: str,
        *,
        role: Role = Role.operator,
        status: AccountStatus = AccountStatus.pending_approval,
        **fields,
    ) -> Account:
        self._tick += 1
        created = NOW + timedelta(seconds=self._tick)
        account = Account(
            identity=identity,
            email=f"{identity}@example.com",
            role=role,
            status=status,
            created_at=created,
            updated_at=created,
            **fields,
        )
        self._accounts[identity] = account
        return replace(account)

    def get_account(self, identity: str) -> Account | None:
        if self.fail_with is not None:
            raise self.fail_with
        account = self._accounts.get(identity)
        return replace(account) if account else None

    def create_account(self, identity: str, payload: RegisterAccountInput, *, audit: AuditEntry | None = None):
        existing = self._accounts.get(identity)
        if existing:
            return replace(existing), False
        if audit is not None:
            self.append_audit(identity, audit)
        self.seed(
            identity,
            role=payload.role,
            full_name=payload.full_name,
            organization=payload.organization,
        )
        self._accounts[identity].email = payload.email
        return replace(self._accounts[identity]), True

    def update_status(
        self,
        identity: str,
        *,
        expected: AccountStatus,
        status: AccountStatus,
        approved_by: str | None,
        approved_at: datetime | None,
        rejection_reason: str | None,
        audit: AuditEntry | None = None,
    ) -> Account:
        stored = self._accounts.get(identity)
        if stored is None:
            raise AccountNotFound(identity)
        if stored.status is not expected:
            raise TransitionConflict(identity, expected.value)
        # audit first: a failed insert leaves the profile untouched, like a rolled back transaction
        if audit is not None:
            self.append_audit(identity, audit)
        stored.status = status
        stored.approved_by = approved_by
        stored.approved_at = approved_at
        stored.rejection_reason = rejection_reason
        stored.updated_at = datetime.now(timezone.utc)
        return replace(stored)

    def list_by_status(self, status: AccountStatus, *, limit: int = 50, offset: int = 0):
        matches = sorted(
            (account for account in self._accounts.values() if account.status is status),
            key=lambda account: account.created_at,
        )
        return [replace(account) for account in matches[offset : offset + limit]]

    def list_all(self, filters: AccountFilters):
        matches = [
            account
            for account in self._accounts.values()
            if (filters.status is None or account.status is filters.status)
            and (filters.role is None or account.role is filters.role)
        ]
        matches.sort(key=lambda account: account.created_at, reverse=True)
        return [replace(account) for account in matches[filters.offset : filters.offset + filters.limit]]

    def count_stats(self) -> AccountStats:
        accounts = list(self._accounts.values())
        return AccountStats(
            total=len(accounts),
            pending=sum(1 for a in accounts if a.status is AccountStatus.pending_approval),
            approved=sum(1 for a in accounts if a.status is AccountStatus.approved),
            rejected=sum(1 for a in accounts if a.status is AccountStatus.rejected),
            suspended=sum(1 for a in accounts if a.status is AccountStatus.suspended),
            by_role={role.value: sum(1 for a in accounts if a.role is role) for role in Role},
        )

    def append_audit(self, account_id: str | None, entry: AuditEntry) -> None:
        self._audit_seq += 1
        self.audit_log.append(
            FakeAuditLogRecord(
                audit_id=self._audit_seq,
                account_id=account_id,
                event_type=entry.event_type,
                actor=entry.actor,
                metadata=entry.metadata or {},
                created_at=NOW + timedelta(seconds=self._audit_seq),
            )
        )

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: tuple[datetime, int] | None = None,
    ):
        results = list(self.audit_log)
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class Clock:
    """Deterministic clock advanced explicitly by tests."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def route_config() -> RouteConfig:
    return RouteConfig()


@pytest.fixture
def access_control(repository, route_config) -> AccessControl:
    return AccessControl(repository, JwtIdentityProvider(JWT_SECRET), route_config)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def service(repository, clock) -> AccountService:
    return AccountService(repository, clock=clock)


@pytest.fixture
def admin_account(repository) -> Account:
    return repository.seed("admin-1", role=Role.admin, status=AccountStatus.approved)


@pytest.fixture
def api_client(repository, access_control, service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(admin.router)
    app.state.access_control = access_control
    app.state.account_service = service

    with TestClient(app) as client:
        yield client
