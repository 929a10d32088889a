"""Repository layer for store records.

Handles the seam between SQLAlchemy rows (strings, naive SQLite timestamps)
and record contracts (strict enum types, UTC timestamps). Our own tables are
not a trust boundary - an unknown enum value raises ValueError here.
"""

from typing import Any

from sqlalchemy.engine import Row as SARow

from clearbridge.contracts.enums import (
    ClearanceStatus,
    IntegrationStatus,
    LogKind,
    Operation,
)
from clearbridge.contracts.records import (
    Clearance,
    ClearanceLink,
    Endpoint,
    Invocation,
    InvocationLogEntry,
)
from clearbridge.store._helpers import as_utc


class InvocationRepository:
    """Repository for Invocation records."""

    def load(self, row: SARow[Any]) -> Invocation:
        """Load Invocation from database row.

        Converts string fields to enums. Crashes on invalid data.
        """
        return Invocation(
            invocation_id=row.invocation_id,
            provider_code=row.provider_code,
            operation=Operation(row.operation_code),
            status=IntegrationStatus(row.status),
            attempt_count=row.attempt_count,
            is_active=bool(row.is_active),
            created_on=as_utc(row.created_on),  # type: ignore[arg-type]  # NOT NULL column
            updated_on=as_utc(row.updated_on),  # type: ignore[arg-type]  # NOT NULL column
            next_retry_time=as_utc(row.next_retry_time),
            created_by=row.created_by,
            updated_by=row.updated_by,
        )


class InvocationLogRepository:
    """Repository for InvocationLogEntry records."""

    def load(self, row: SARow[Any]) -> InvocationLogEntry:
        return InvocationLogEntry(
            log_id=row.log_id,
            invocation_id=row.invocation_id,
            log_sequence=row.log_sequence,
            kind=LogKind(row.kind),
            status=IntegrationStatus(row.status),
            created_on=as_utc(row.created_on),  # type: ignore[arg-type]  # NOT NULL column
            request_payload=row.request_payload,
            response_payload=row.response_payload,
            response_status_code=row.response_status_code,
            request_sent_on=as_utc(row.request_sent_on),
            response_received_on=as_utc(row.response_received_on),
            response_time_ms=row.response_time_ms,
            error_details=row.error_details,
        )


class EndpointRepository:
    """Repository for Endpoint records."""

    def load(self, row: SARow[Any]) -> Endpoint:
        return Endpoint(
            endpoint_id=row.endpoint_id,
            provider_code=row.provider_code,
            operation=Operation(row.operation_code),
            base_url=row.base_url,
            path_template=row.path_template,
            http_method=row.http_method,
            timeout_seconds=row.timeout_seconds,
            is_active=bool(row.is_active),
            data_models=row.data_models,
            payload_template=row.payload_template,
            retrigger=bool(row.retrigger),
            retrigger_count=row.retrigger_count,
            retrigger_interval_minutes=row.retrigger_interval_minutes,
            max_attempts=row.max_attempts,
            sample_payload=row.sample_payload,
            sample_response=row.sample_response,
        )


class ClearanceRepository:
    """Repository for Clearance records."""

    def load(self, row: SARow[Any]) -> Clearance:
        return Clearance(
            clearance_id=row.clearance_id,
            subject_id=row.subject_id,
            provider_code=row.provider_code,
            status_code=ClearanceStatus(row.status_code),
            requested_date=as_utc(row.requested_date),  # type: ignore[arg-type]  # NOT NULL column
            updated_on=as_utc(row.updated_on),  # type: ignore[arg-type]  # NOT NULL column
            program_id=row.program_id,
            completion_date=as_utc(row.completion_date),
            outcome=row.outcome,
            link_remarks=row.link_remarks,
            additional_remarks=row.additional_remarks,
        )


class ClearanceLinkRepository:
    """Repository for ClearanceLink records."""

    def load(self, row: SARow[Any]) -> ClearanceLink:
        return ClearanceLink(
            link_id=row.link_id,
            subject_id=row.subject_id,
            program_id=row.program_id,
            provider_code=row.provider_code,
            requested_date=as_utc(row.requested_date),  # type: ignore[arg-type]  # NOT NULL column
            is_completed=bool(row.is_completed),
            retry_count=row.retry_count,
            assignment_id=row.assignment_id,
            provider_request_id=row.provider_request_id,
            provider_response_id=row.provider_response_id,
            completion_date=as_utc(row.completion_date),
        )
