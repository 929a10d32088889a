"""All status codes, operations, and protocol kinds used across subsystem boundaries.

Values are stored verbatim in the database. Repositories convert the stored
strings back into these enums; an unknown value is a crash, not a default.
"""

from enum import StrEnum


class IntegrationStatus(StrEnum):
    """Status of an invocation or of a single invocation log row.

    Stored in database (invocations.status, invocation_logs.status).

    Invocations only ever hold PENDING, IN_PROGRESS, SUCCESS, RETRY or
    PERMANENTLY_FAILED. Log rows use IN_PROGRESS for the outbound request and
    SUCCESS / FAILED / PERMANENTLY_FAILED for the response or error row.
    The remaining members are provider-side states kept for completeness.
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRY = "RETRY"
    SENT = "SENT"
    FINAL = "FINAL"
    DELIVERED = "DELIVERED"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"


class Operation(StrEnum):
    """Provider operation an invocation performs.

    Stored in database (invocations.operation_code, endpoints.operation_code).
    """

    CREATE_CLEARANCE_REQUEST = "CREATE_CLEARANCE_REQUEST"
    GET_CLEARANCE_STATUS = "GET_CLEARANCE_STATUS"
    ACKNOWLEDGE_RESPONSE = "ACKNOWLEDGE_RESPONSE"
    SET_STATUS_DELIVERED = "SET_STATUS_DELIVERED"


class ClearanceStatus(StrEnum):
    """Summary status of a subject's clearance with one provider.

    Stored in database (clearances.status_code). Ordering is significant:
    a clearance only ever moves forward through ``rank``.
    """

    CLEARANCE_REQUESTED = "CLEARANCE_REQUESTED"
    CLEARED = "CLEARED"
    DELIVERED = "DELIVERED"

    @property
    def rank(self) -> int:
        return _CLEARANCE_RANK[self]


_CLEARANCE_RANK: dict[ClearanceStatus, int] = {
    ClearanceStatus.CLEARANCE_REQUESTED: 1,
    ClearanceStatus.CLEARED: 2,
    ClearanceStatus.DELIVERED: 3,
}


class ProtocolShape(StrEnum):
    """Number of cycles a provider's clearance protocol runs through.

    Values:
        TWO_CYCLE: create, then status (status completion is terminal DELIVERED)
        THREE_CYCLE: create, status (CLEARED), then acknowledge (DELIVERED)
    """

    TWO_CYCLE = "two_cycle"
    THREE_CYCLE = "three_cycle"


class LogKind(StrEnum):
    """Kind of invocation log row.

    Stored in database (invocation_logs.kind).
    """

    REQUEST = "request"
    RESPONSE = "response"
    ERROR = "error"
