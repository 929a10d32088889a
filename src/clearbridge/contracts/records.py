"""Record contracts for the invocation store and the clearance tables.

These are strict contracts - all enum fields use proper enum types.
Repository layer handles string->enum conversion for DB reads.
"""

from dataclasses import dataclass
from datetime import datetime

from clearbridge.contracts.enums import (
    ClearanceStatus,
    IntegrationStatus,
    LogKind,
    Operation,
)


def _validate_enum(value: object, enum_type: type, field_name: str) -> None:
    """Validate that value is an instance of the expected enum type.

    Rows read from our own tables must already be converted; a raw string
    here means a repository skipped its conversion.
    """
    if value is not None and not isinstance(value, enum_type):
        raise TypeError(f"{field_name} must be {enum_type.__name__}, got {type(value).__name__}: {value!r}")


@dataclass(frozen=True)
class Invocation:
    """One attempted call to a provider for a given operation.

    Deliberately carries no reference to the internal subject or program:
    that identity lives only in the first logged request body.
    """

    invocation_id: int
    provider_code: str
    operation: Operation
    status: IntegrationStatus
    attempt_count: int
    is_active: bool
    created_on: datetime
    updated_on: datetime
    next_retry_time: datetime | None = None
    created_by: str = "System"
    updated_by: str = "System"

    def __post_init__(self) -> None:
        _validate_enum(self.operation, Operation, "operation")
        _validate_enum(self.status, IntegrationStatus, "status")


@dataclass(frozen=True)
class InvocationLogEntry:
    """A request, response, or error row of an invocation's append-only log."""

    log_id: int
    invocation_id: int
    log_sequence: int
    kind: LogKind
    status: IntegrationStatus
    created_on: datetime
    request_payload: str | None = None
    response_payload: str | None = None
    response_status_code: int | None = None
    request_sent_on: datetime | None = None
    response_received_on: datetime | None = None
    response_time_ms: int | None = None
    error_details: str | None = None

    def __post_init__(self) -> None:
        _validate_enum(self.kind, LogKind, "kind")
        _validate_enum(self.status, IntegrationStatus, "status")


@dataclass(frozen=True)
class Endpoint:
    """Data-driven definition of how to call one (provider, operation) pair."""

    endpoint_id: int
    provider_code: str
    operation: Operation
    base_url: str
    path_template: str
    http_method: str
    timeout_seconds: int
    is_active: bool
    data_models: str = ""
    payload_template: str | None = None
    retrigger: bool = False
    retrigger_count: int = 0
    retrigger_interval_minutes: int = 1
    max_attempts: int = 1
    sample_payload: str | None = None
    sample_response: str | None = None

    def __post_init__(self) -> None:
        _validate_enum(self.operation, Operation, "operation")

    @property
    def model_names(self) -> list[str]:
        """Names of the data sub-models the payload template needs."""
        return [name.strip() for name in self.data_models.split(",") if name.strip()]


@dataclass(frozen=True)
class Clearance:
    """Evolving summary of a subject's standing with one provider."""

    clearance_id: int
    subject_id: int
    provider_code: str
    status_code: ClearanceStatus
    requested_date: datetime
    updated_on: datetime
    program_id: int | None = None
    completion_date: datetime | None = None
    outcome: str | None = None
    link_remarks: str | None = None
    additional_remarks: str | None = None

    def __post_init__(self) -> None:
        _validate_enum(self.status_code, ClearanceStatus, "status_code")


@dataclass(frozen=True)
class ClearanceLink:
    """Cross-reference between a subject/program pair and provider-assigned ids."""

    link_id: int
    subject_id: int
    program_id: int
    provider_code: str
    requested_date: datetime
    is_completed: bool = False
    retry_count: int = 0
    assignment_id: int | None = None
    provider_request_id: str | None = None
    provider_response_id: str | None = None
    completion_date: datetime | None = None


@dataclass(frozen=True)
class ResolvedContext:
    """Internal identity pair an invocation acts on."""

    subject_id: int
    program_id: int


@dataclass(frozen=True)
class BootstrapRequest:
    """Caller-supplied intent for the first execution of an invocation.

    Either id may be 0 when the caller only knows one side; the resolver
    fills the other from the clearance link table.
    """

    subject_id: int
    program_id: int
    provider_code: str
    operation: Operation = Operation.CREATE_CLEARANCE_REQUEST
