# src/clearbridge/store/clearances.py
"""Clearance summaries, clearance links, and the internal case entities behind them.

Clearance rows only move forward through ClearanceStatus.rank. Link rows keep
their provider request id forever once set; later cycles only fill in the
response id and completion fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Table, and_, select, update

from clearbridge.contracts import Clearance, ClearanceLink, ClearanceRegressionError, ClearanceStatus
from clearbridge.store._database_ops import DatabaseOps
from clearbridge.store._helpers import now
from clearbridge.store.repositories import ClearanceLinkRepository, ClearanceRepository
from clearbridge.store.schema import (
    assignments_table,
    clearance_links_table,
    clearances_table,
    programs_table,
    subjects_table,
    users_table,
)

if TYPE_CHECKING:
    from clearbridge.store.database import ClearanceDB

logger = structlog.get_logger(__name__)

REMARK_SEPARATOR = ";"


def append_remark(existing: str | None, remark: str) -> str:
    """Append a remark to a ';'-joined remark list, skipping blanks."""
    if not existing or not existing.strip():
        return remark
    return f"{existing}{REMARK_SEPARATOR}{remark}"


class ClearanceStore:
    """Reads and writes clearance state and the case entities it refers to."""

    def __init__(self, db: ClearanceDB) -> None:
        self._ops = DatabaseOps(db)
        self._clearance_repo = ClearanceRepository()
        self._link_repo = ClearanceLinkRepository()

    # === Case entities (returned as plain mappings for the composer) ===

    def _get_entity(self, table: Table, entity_id: int) -> dict[str, Any] | None:
        row = self._ops.execute_fetchone(select(table).where(table.c.id == entity_id))
        return dict(row._mapping) if row is not None else None

    def get_subject(self, subject_id: int) -> dict[str, Any] | None:
        return self._get_entity(subjects_table, subject_id)

    def get_program(self, program_id: int) -> dict[str, Any] | None:
        return self._get_entity(programs_table, program_id)

    def get_assignment(self, assignment_id: int) -> dict[str, Any] | None:
        return self._get_entity(assignments_table, assignment_id)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        return self._get_entity(users_table, user_id)

    def find_program(self, program_id: int, *, assignment_id: int | None = None) -> dict[str, Any] | None:
        """Program by id, optionally required to belong to an assignment."""
        conditions = [programs_table.c.id == program_id]
        if assignment_id is not None:
            conditions.append(programs_table.c.assignment_id == assignment_id)
        row = self._ops.execute_fetchone(select(programs_table).where(and_(*conditions)))
        return dict(row._mapping) if row is not None else None

    def find_subject_ids_by_index_number(self, index_number: str) -> list[int]:
        rows = self._ops.execute_fetchall(
            select(subjects_table.c.id).where(subjects_table.c.index_number == index_number).order_by(subjects_table.c.id)
        )
        return [int(r.id) for r in rows]

    def add_user(self, **values: Any) -> int:
        return self._ops.execute_insert(users_table.insert().values(**values))

    def add_subject(self, **values: Any) -> int:
        return self._ops.execute_insert(subjects_table.insert().values(**values))

    def add_assignment(self, **values: Any) -> int:
        return self._ops.execute_insert(assignments_table.insert().values(**values))

    def add_program(self, **values: Any) -> int:
        return self._ops.execute_insert(programs_table.insert().values(**values))

    # === Clearance links ===

    def create_link(
        self,
        *,
        subject_id: int,
        program_id: int,
        provider_code: str,
        provider_request_id: str,
        assignment_id: int | None = None,
    ) -> ClearanceLink:
        """Create the cross-reference row for a freshly accepted request."""
        link_id = self._ops.execute_insert(
            clearance_links_table.insert().values(
                subject_id=subject_id,
                program_id=program_id,
                assignment_id=assignment_id,
                provider_code=provider_code,
                provider_request_id=provider_request_id,
                provider_response_id=None,
                is_completed=False,
                retry_count=0,
                requested_date=now(),
                completion_date=None,
            )
        )
        link = self.get_link(link_id)
        if link is None:
            raise ValueError(f"Clearance link {link_id} vanished after insert")
        return link

    def get_link(self, link_id: int) -> ClearanceLink | None:
        row = self._ops.execute_fetchone(select(clearance_links_table).where(clearance_links_table.c.link_id == link_id))
        return self._link_repo.load(row) if row is not None else None

    def _latest_link(self, *conditions: Any) -> ClearanceLink | None:
        row = self._ops.execute_fetchone(
            select(clearance_links_table)
            .where(and_(*conditions))
            .order_by(clearance_links_table.c.requested_date.desc(), clearance_links_table.c.link_id.desc())
        )
        return self._link_repo.load(row) if row is not None else None

    def latest_link(
        self,
        *,
        subject_id: int | None = None,
        program_id: int | None = None,
        provider_code: str | None = None,
    ) -> ClearanceLink | None:
        """Most recently requested link matching every given key."""
        conditions: list[Any] = []
        if subject_id is not None:
            conditions.append(clearance_links_table.c.subject_id == subject_id)
        if program_id is not None:
            conditions.append(clearance_links_table.c.program_id == program_id)
        if provider_code is not None:
            conditions.append(clearance_links_table.c.provider_code == provider_code)
        if not conditions:
            raise ValueError("latest_link needs at least one key")
        return self._latest_link(*conditions)

    def find_open_link_by_request_id(self, provider_request_id: str, provider_code: str) -> ClearanceLink | None:
        """Most recent incomplete link carrying a provider request id."""
        return self._latest_link(
            clearance_links_table.c.provider_request_id == provider_request_id,
            clearance_links_table.c.provider_code == provider_code,
            clearance_links_table.c.is_completed.is_(False),
        )

    def find_open_links(self, subject_id: int, provider_code: str, *, program_id: int | None = None) -> list[ClearanceLink]:
        """Incomplete links for a subject with a provider, newest first."""
        conditions = [
            clearance_links_table.c.subject_id == subject_id,
            clearance_links_table.c.provider_code == provider_code,
            clearance_links_table.c.is_completed.is_(False),
        ]
        if program_id is not None:
            conditions.append(clearance_links_table.c.program_id == program_id)
        rows = self._ops.execute_fetchall(
            select(clearance_links_table)
            .where(and_(*conditions))
            .order_by(clearance_links_table.c.requested_date.desc(), clearance_links_table.c.link_id.desc())
        )
        return [self._link_repo.load(r) for r in rows]

    def complete_link(self, link_id: int, *, provider_response_id: str | None, completion_date: datetime) -> bool:
        """Mark an incomplete link completed.

        provider_request_id is never part of this write. Returns False when
        the link was already completed (a concurrent or duplicate result).
        """
        values: dict[str, Any] = {"is_completed": True, "completion_date": completion_date}
        if provider_response_id and provider_response_id.strip():
            values["provider_response_id"] = provider_response_id
        return self._ops.execute_guarded_update(
            update(clearance_links_table)
            .where(
                and_(
                    clearance_links_table.c.link_id == link_id,
                    clearance_links_table.c.is_completed.is_(False),
                )
            )
            .values(**values)
        )

    # === Clearance summaries ===

    def get_clearance(self, subject_id: int, provider_code: str) -> Clearance | None:
        row = self._ops.execute_fetchone(
            select(clearances_table).where(
                and_(
                    clearances_table.c.subject_id == subject_id,
                    clearances_table.c.provider_code == provider_code,
                )
            )
        )
        return self._clearance_repo.load(row) if row is not None else None

    def get_clearance_by_id(self, clearance_id: int) -> Clearance | None:
        row = self._ops.execute_fetchone(select(clearances_table).where(clearances_table.c.clearance_id == clearance_id))
        return self._clearance_repo.load(row) if row is not None else None

    def list_clearances(self, status: ClearanceStatus, *, provider_code: str | None = None) -> list[Clearance]:
        """Clearances at a status, most recently updated first."""
        conditions = [clearances_table.c.status_code == status.value]
        if provider_code is not None:
            conditions.append(clearances_table.c.provider_code == provider_code)
        rows = self._ops.execute_fetchall(
            select(clearances_table)
            .where(and_(*conditions))
            .order_by(clearances_table.c.updated_on.desc(), clearances_table.c.clearance_id.desc())
        )
        return [self._clearance_repo.load(r) for r in rows]

    def record_requested(
        self,
        *,
        subject_id: int,
        program_id: int,
        provider_code: str,
        remark: str,
    ) -> Clearance:
        """Create the summary at CLEARANCE_REQUESTED, or refresh an existing one.

        A summary that has already moved past CLEARANCE_REQUESTED keeps its
        status; only the remark is appended.
        """
        timestamp = now()
        existing = self.get_clearance(subject_id, provider_code)
        if existing is None:
            clearance_id = self._ops.execute_insert(
                clearances_table.insert().values(
                    subject_id=subject_id,
                    program_id=program_id,
                    provider_code=provider_code,
                    status_code=ClearanceStatus.CLEARANCE_REQUESTED.value,
                    requested_date=timestamp,
                    link_remarks=remark,
                    updated_on=timestamp,
                )
            )
        else:
            clearance_id = existing.clearance_id
            values: dict[str, Any] = {
                "link_remarks": append_remark(existing.link_remarks, remark),
                "updated_on": timestamp,
            }
            if existing.status_code == ClearanceStatus.CLEARANCE_REQUESTED:
                values.update(program_id=program_id, requested_date=timestamp)
            else:
                logger.warning(
                    "Clearance already past request stage; status kept",
                    clearance_id=existing.clearance_id,
                    status=existing.status_code.value,
                )
            self._ops.execute_update(update(clearances_table).where(clearances_table.c.clearance_id == clearance_id).values(**values))

        clearance = self.get_clearance_by_id(clearance_id)
        if clearance is None:
            raise ValueError(f"Clearance {clearance_id} vanished after write")
        return clearance

    def advance(
        self,
        clearance_id: int,
        status: ClearanceStatus,
        *,
        outcome: str | None = None,
        completion_date: datetime | None = None,
        link_remark: str | None = None,
        additional_remark: str | None = None,
    ) -> Clearance:
        """Move a clearance forward to ``status``.

        Re-applying the current status is allowed (idempotent delivery of the
        same result).

        Raises:
            ClearanceRegressionError: If ``status`` ranks below the current one
        """
        current = self.get_clearance_by_id(clearance_id)
        if current is None:
            raise ValueError(f"Clearance {clearance_id} does not exist")
        if status.rank < current.status_code.rank:
            raise ClearanceRegressionError(clearance_id, current.status_code.value, status.value)

        values: dict[str, Any] = {"status_code": status.value, "updated_on": now()}
        if outcome is not None:
            values["outcome"] = outcome
        if completion_date is not None:
            values["completion_date"] = completion_date
        if link_remark:
            values["link_remarks"] = append_remark(current.link_remarks, link_remark)
        if additional_remark:
            values["additional_remarks"] = append_remark(current.additional_remarks, additional_remark)
        self._ops.execute_update(update(clearances_table).where(clearances_table.c.clearance_id == clearance_id).values(**values))

        advanced = self.get_clearance_by_id(clearance_id)
        if advanced is None:
            raise ValueError(f"Clearance {clearance_id} vanished during update")
        return advanced
