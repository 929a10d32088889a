# src/clearbridge/store/invocations.py
"""Invocation store: invocation rows and their append-only, sequenced log."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, select, update

from clearbridge.contracts import (
    IntegrationStatus,
    Invocation,
    InvocationLogEntry,
    LogKind,
    Operation,
)
from clearbridge.store._database_ops import DatabaseOps
from clearbridge.store._helpers import SYSTEM_USER, now
from clearbridge.store.repositories import InvocationLogRepository, InvocationRepository
from clearbridge.store.schema import invocation_logs_table, invocations_table

if TYPE_CHECKING:
    from clearbridge.store.database import ClearanceDB

# States an attempt may start from. PENDING is the normal gate; RETRY allows
# an operator to run a waiting invocation without the sweep.
_STARTABLE = (IntegrationStatus.PENDING, IntegrationStatus.RETRY)

# States the status poller may re-queue. IN_PROGRESS belongs to someone else;
# PERMANENTLY_FAILED is only ever revisited by a person.
_REQUEUEABLE = (IntegrationStatus.SUCCESS, IntegrationStatus.RETRY, IntegrationStatus.PENDING)


class InvocationStore:
    """Reads and writes invocation rows and invocation log rows.

    The log is append-only: there is no method that modifies or deletes a
    log row, which keeps the first logged request body immutable.
    """

    def __init__(self, db: ClearanceDB) -> None:
        self._db = db
        self._ops = DatabaseOps(db)
        self._invocation_repo = InvocationRepository()
        self._log_repo = InvocationLogRepository()

    # === Invocations ===

    def create(self, provider_code: str, operation: Operation) -> Invocation:
        """Insert a new PENDING invocation with attempt_count 0."""
        timestamp = now()
        invocation_id = self._ops.execute_insert(
            invocations_table.insert().values(
                provider_code=provider_code,
                operation_code=operation.value,
                status=IntegrationStatus.PENDING.value,
                attempt_count=0,
                next_retry_time=None,
                is_active=True,
                created_on=timestamp,
                created_by=SYSTEM_USER,
                updated_on=timestamp,
                updated_by=SYSTEM_USER,
            )
        )
        created = self.get(invocation_id)
        if created is None:
            raise ValueError(f"Invocation {invocation_id} vanished after insert")
        return created

    def get(self, invocation_id: int) -> Invocation | None:
        row = self._ops.execute_fetchone(select(invocations_table).where(invocations_table.c.invocation_id == invocation_id))
        return self._invocation_repo.load(row) if row is not None else None

    def begin_attempt(self, invocation_id: int) -> Invocation | None:
        """Move a startable invocation to IN_PROGRESS and bump attempt_count.

        This compare-and-set is the single-writer gate: None means the row
        does not exist or is already being handled elsewhere.
        """
        claimed = self._ops.execute_guarded_update(
            update(invocations_table)
            .where(
                and_(
                    invocations_table.c.invocation_id == invocation_id,
                    invocations_table.c.status.in_([s.value for s in _STARTABLE]),
                )
            )
            .values(
                status=IntegrationStatus.IN_PROGRESS.value,
                attempt_count=invocations_table.c.attempt_count + 1,
                updated_on=now(),
                updated_by=SYSTEM_USER,
            )
        )
        return self.get(invocation_id) if claimed else None

    def finish_attempt(
        self,
        invocation_id: int,
        status: IntegrationStatus,
        *,
        next_retry_time: datetime | None = None,
    ) -> Invocation:
        """Record the outcome of an attempt (SUCCESS, RETRY or PERMANENTLY_FAILED)."""
        if status not in (IntegrationStatus.SUCCESS, IntegrationStatus.RETRY, IntegrationStatus.PERMANENTLY_FAILED):
            raise ValueError(f"{status} is not an attempt outcome")
        if status == IntegrationStatus.RETRY and next_retry_time is None:
            raise ValueError("RETRY requires next_retry_time")
        self._ops.execute_update(
            update(invocations_table)
            .where(invocations_table.c.invocation_id == invocation_id)
            .values(
                status=status.value,
                next_retry_time=next_retry_time if status == IntegrationStatus.RETRY else None,
                updated_on=now(),
                updated_by=SYSTEM_USER,
            )
        )
        finished = self.get(invocation_id)
        if finished is None:
            raise ValueError(f"Invocation {invocation_id} vanished during update")
        return finished

    def list_pending(self) -> list[Invocation]:
        rows = self._ops.execute_fetchall(
            select(invocations_table)
            .where(
                and_(
                    invocations_table.c.status == IntegrationStatus.PENDING.value,
                    invocations_table.c.is_active.is_(True),
                )
            )
            .order_by(invocations_table.c.created_on, invocations_table.c.invocation_id)
        )
        return [self._invocation_repo.load(r) for r in rows]

    def list_due_retries(self, due_before: datetime, limit: int) -> list[Invocation]:
        """Invocations in RETRY whose next_retry_time has passed, oldest-due first."""
        rows = self._ops.execute_fetchall(
            select(invocations_table)
            .where(
                and_(
                    invocations_table.c.status == IntegrationStatus.RETRY.value,
                    invocations_table.c.next_retry_time.is_not(None),
                    invocations_table.c.next_retry_time <= due_before,
                    invocations_table.c.is_active.is_(True),
                )
            )
            .order_by(invocations_table.c.next_retry_time, invocations_table.c.invocation_id)
            .limit(limit)
        )
        return [self._invocation_repo.load(r) for r in rows]

    def requeue_due_retry(self, invocation_id: int) -> bool:
        """Flip RETRY -> PENDING and clear next_retry_time.

        Guarded on the current status so a row another process has already
        moved (for example to PERMANENTLY_FAILED) is left alone.
        """
        return self._ops.execute_guarded_update(
            update(invocations_table)
            .where(
                and_(
                    invocations_table.c.invocation_id == invocation_id,
                    invocations_table.c.status == IntegrationStatus.RETRY.value,
                )
            )
            .values(
                status=IntegrationStatus.PENDING.value,
                next_retry_time=None,
                updated_on=now(),
                updated_by=SYSTEM_USER,
            )
        )

    def requeue(self, invocation_id: int) -> bool:
        """Set a finished-but-revisitable invocation back to PENDING."""
        return self._ops.execute_guarded_update(
            update(invocations_table)
            .where(
                and_(
                    invocations_table.c.invocation_id == invocation_id,
                    invocations_table.c.status.in_([s.value for s in _REQUEUEABLE]),
                )
            )
            .values(
                status=IntegrationStatus.PENDING.value,
                next_retry_time=None,
                updated_on=now(),
                updated_by=SYSTEM_USER,
            )
        )

    def find_by_provider_operation(self, provider_code: str, operation: Operation) -> list[Invocation]:
        """Active invocations of one provider/operation, most recently updated first."""
        rows = self._ops.execute_fetchall(
            select(invocations_table)
            .where(
                and_(
                    invocations_table.c.provider_code == provider_code,
                    invocations_table.c.operation_code == operation.value,
                    invocations_table.c.is_active.is_(True),
                )
            )
            .order_by(invocations_table.c.updated_on.desc(), invocations_table.c.invocation_id.desc())
        )
        return [self._invocation_repo.load(r) for r in rows]

    # === Invocation log ===

    def append_log(
        self,
        invocation_id: int,
        *,
        kind: LogKind,
        status: IntegrationStatus,
        request_payload: str | None = None,
        response_payload: str | None = None,
        response_status_code: int | None = None,
        request_sent_on: datetime | None = None,
        response_received_on: datetime | None = None,
        response_time_ms: int | None = None,
        error_details: str | None = None,
    ) -> InvocationLogEntry:
        """Append a log row with the next sequence number for the invocation.

        The sequence is max(existing) + 1, allocated in the same transaction
        as the insert; UNIQUE(invocation_id, log_sequence) rejects a racing
        duplicate.
        """
        with self._db.connection() as conn:
            current_max = conn.execute(
                select(func.max(invocation_logs_table.c.log_sequence)).where(invocation_logs_table.c.invocation_id == invocation_id)
            ).scalar()
            sequence = (current_max or 0) + 1
            result = conn.execute(
                invocation_logs_table.insert().values(
                    invocation_id=invocation_id,
                    log_sequence=sequence,
                    kind=kind.value,
                    status=status.value,
                    request_payload=request_payload,
                    response_payload=response_payload,
                    response_status_code=response_status_code,
                    request_sent_on=request_sent_on,
                    response_received_on=response_received_on,
                    response_time_ms=response_time_ms,
                    error_details=error_details,
                    created_on=now(),
                    created_by=SYSTEM_USER,
                )
            )
            log_id = result.inserted_primary_key[0]  # type: ignore[index]  # autoincrement PK always present
            row = conn.execute(select(invocation_logs_table).where(invocation_logs_table.c.log_id == log_id)).one()
        return self._log_repo.load(row)

    def logs(self, invocation_id: int) -> list[InvocationLogEntry]:
        rows = self._ops.execute_fetchall(
            select(invocation_logs_table)
            .where(invocation_logs_table.c.invocation_id == invocation_id)
            .order_by(invocation_logs_table.c.log_sequence)
        )
        return [self._log_repo.load(r) for r in rows]

    def first_request_payload(self, invocation_id: int) -> str | None:
        """The first non-blank request body logged for an invocation.

        This is the only durable record of the caller's original intent.
        """
        rows = self._ops.execute_fetchall(
            select(invocation_logs_table.c.request_payload)
            .where(
                and_(
                    invocation_logs_table.c.invocation_id == invocation_id,
                    invocation_logs_table.c.request_payload.is_not(None),
                )
            )
            .order_by(invocation_logs_table.c.created_on, invocation_logs_table.c.log_sequence)
        )
        for row in rows:
            if row.request_payload.strip():
                return str(row.request_payload)
        return None
