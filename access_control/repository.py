"""Database repository for user profiles and the account audit log."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Tuple

import psycopg
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account, AccountStatus, Role, parse_role
from .domain.contracts import AccountFilters, AccountStats, RegisterAccountInput
from .domain.errors import AccountNotFound, StoreUnavailable, TransitionConflict

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = """
    user_id, email, full_name, organization, role, status,
    approved_by, approved_at, rejection_reason, created_at, updated_at
"""


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in account_audit_log."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class AuditEntry:
    """Audit row written in the same transaction as the change it records."""

    event_type: str
    actor: str | None
    metadata: dict[str, Any]


class AccountRepository:
    """Postgres-backed ``user_profiles`` persistence with bounded timeouts."""

    def __init__(self, pool: ConnectionPool, *, timeout: float = 2.0) -> None:
        """Store the connection pool and the checkout timeout for every call."""
        self._pool = pool
        self._timeout = timeout

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        """Check out a connection, translating driver faults into ``StoreUnavailable``."""
        try:
            with self._pool.connection(timeout=self._timeout) as conn:
                yield conn
        except PoolTimeout as exc:
            raise StoreUnavailable("timed out waiting for a database connection") from exc
        except psycopg.Error as exc:
            raise StoreUnavailable(f"account store error: {exc}") from exc

    def get_account(self, identity: str) -> Account | None:
        """Fetch the profile for ``identity`` or return ``None``."""
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_PROFILE_COLUMNS} FROM user_profiles WHERE user_id = %s",
                    (identity,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def create_account(
        self,
        identity: str,
        payload: RegisterAccountInput,
        *,
        audit: AuditEntry | None = None,
    ) -> Tuple[Account, bool]:
        """Insert a pending profile and return ``(account, created)``.

        An existing profile for the identity is returned untouched with
        ``created`` set to ``False``; ``audit`` is only written for a new row.
        """
        now = datetime.now(timezone.utc)
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO user_profiles
                        (user_id, email, full_name, organization, role, status, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id) DO NOTHING
                    RETURNING {_PROFILE_COLUMNS}
                    """,
                    (
                        identity,
                        payload.email,
                        payload.full_name,
                        payload.organization,
                        payload.role.value,
                        AccountStatus.pending_approval.value,
                        now,
                        now,
                    ),
                )
                row = cur.fetchone()
                created = row is not None
                if not created:
                    cur.execute(
                        f"SELECT {_PROFILE_COLUMNS} FROM user_profiles WHERE user_id = %s",
                        (identity,),
                    )
                    row = cur.fetchone()
                elif audit is not None:
                    self._insert_audit(cur, identity, audit)
                conn.commit()
        return self._map_record(row), created

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
        """Compare-and-swap the status of ``identity`` from ``expected`` to ``status``.

        ``audit`` is inserted in the same transaction, so the status change and
        its audit row commit or roll back together. Raises
        ``TransitionConflict`` when another writer changed the status first and
        ``AccountNotFound`` when the row is gone.
        """
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE user_profiles
                    SET status = %s,
                        approved_by = %s,
                        approved_at = %s,
                        rejection_reason = %s,
                        updated_at = NOW()
                    WHERE user_id = %s AND status = %s
                    RETURNING {_PROFILE_COLUMNS}
                    """,
                    (
                        status.value,
                        approved_by,
                        approved_at,
                        rejection_reason,
                        identity,
                        expected.value,
                    ),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute("SELECT 1 FROM user_profiles WHERE user_id = %s", (identity,))
                    exists = cur.fetchone() is not None
                    conn.rollback()
                    if not exists:
                        raise AccountNotFound(identity)
                    raise TransitionConflict(identity, expected.value)
                account = self._map_record(row)
                if audit is not None:
                    self._insert_audit(cur, identity, audit)
                conn.commit()
        return account

    def list_by_status(self, status: AccountStatus, *, limit: int = 50, offset: int = 0) -> list[Account]:
        """Return profiles in ``status``, oldest first."""
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_PROFILE_COLUMNS}
                    FROM user_profiles
                    WHERE status = %s
                    ORDER BY created_at ASC
                    LIMIT %s OFFSET %s
                    """,
                    (status.value, limit, offset),
                )
                rows = cur.fetchall()
        return self._map_listing(rows)

    def list_all(self, filters: AccountFilters) -> list[Account]:
        """Return profiles matching the optional status/role filters, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if filters.status is not None:
            clauses.append("status = %s")
            params.append(filters.status.value)
        if filters.role is not None:
            clauses.append("role = %s")
            params.append(filters.role.value)
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([filters.limit, filters.offset])

        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_PROFILE_COLUMNS}
                    FROM user_profiles
                    {where_sql}
                    ORDER BY created_at DESC
                    LIMIT %s OFFSET %s
                    """,
                    params,
                )
                rows = cur.fetchall()
        return self._map_listing(rows)

    def count_stats(self) -> AccountStats:
        """Aggregate profile counts by status and by canonical role."""
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT status, role, COUNT(*) FROM user_profiles GROUP BY status, role"
                )
                rows = cur.fetchall()

        by_status: dict[str, int] = {status.value: 0 for status in AccountStatus}
        by_role: dict[str, int] = {role.value: 0 for role in Role}
        for status, role, count in rows:
            by_status[status] = by_status.get(status, 0) + count
            try:
                by_role[parse_role(role).value] += count
            except ValueError:
                logger.warning("skipping %d profiles with unknown role %r in stats", count, role)
        return AccountStats(
            total=sum(by_status.values()),
            pending=by_status[AccountStatus.pending_approval.value],
            approved=by_status[AccountStatus.approved.value],
            rejected=by_status[AccountStatus.rejected.value],
            suspended=by_status[AccountStatus.suspended.value],
            by_role=by_role,
        )

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        try:
            return Account(
                identity=row[0],
                email=row[1],
                full_name=row[2],
                organization=row[3],
                role=parse_role(row[4]),
                status=AccountStatus(row[5]),
                approved_by=row[6],
                approved_at=row[7],
                rejection_reason=row[8],
                created_at=row[9],
                updated_at=row[10],
            )
        except (ValueError, IndexError, TypeError) as exc:
            raise StoreUnavailable(f"malformed user_profiles row: {exc}") from exc

    def _map_listing(self, rows: list[tuple]) -> list[Account]:
        """Map listing rows, skipping the ones that cannot be read."""
        accounts: list[Account] = []
        for row in rows:
            try:
                accounts.append(self._map_record(row))
            except StoreUnavailable as exc:
                logger.warning("skipping unreadable profile %r in listing: %s", row[0] if row else None, exc)
        return accounts

    def _insert_audit(self, cur: psycopg.Cursor, account_id: str | None, entry: AuditEntry) -> None:
        cur.execute(
            """
            INSERT INTO account_audit_log (account_id, event_type, actor, metadata)
            VALUES (%s, %s, %s, %s)
            """,
            (account_id, entry.event_type, entry.actor, Json(entry.metadata or {})),
        )

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit log entries with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []

        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT audit_id, account_id, event_type, actor, metadata, created_at
            FROM account_audit_log
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        params.append(limit)

        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                records = [
                    AuditLogRecord(
                        audit_id=row[0],
                        account_id=row[1],
                        event_type=row[2],
                        actor=row[3],
                        metadata=row[4] or {},
                        created_at=row[5],
                    )
                    for row in cur.fetchall()
                ]

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor
