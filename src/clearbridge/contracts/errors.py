"""Error and reason schema contracts.

TypedDict schemas for structured error payloads written to the invocation
log, plus the exception classes raised across component boundaries.
"""

from typing import NotRequired, TypedDict


class AttemptErrorDetail(TypedDict):
    """Schema for the error detail of a failed attempt.

    Rendered into invocation_logs.error_details by format_attempt_error().
    """

    status_code: int  # HTTP status, 408 for timeout, 0 for transport failure
    message: str  # Transport or HTTP reason text
    body: NotRequired[str]  # Response body, if any


class ExceptionDetail(TypedDict):
    """Schema for an exception caught during an attempt."""

    exception: str  # String representation of the exception
    type: str  # Exception class name (e.g., "ValueError")


# =============================================================================
# Correlation errors
# =============================================================================


class UnresolvableContextError(Exception):
    """Raised when the subject/program pair of an invocation cannot be determined.

    This is a data problem, not a transient one: the runner ends the
    invocation PERMANENTLY_FAILED instead of scheduling a retry.

    Attributes:
        invocation_id: Invocation being resolved (None on the bootstrap path)
        reason: Human-readable explanation
    """

    def __init__(self, reason: str, *, invocation_id: int | None = None) -> None:
        self.invocation_id = invocation_id
        self.reason = reason
        prefix = f"Invocation {invocation_id}: " if invocation_id is not None else ""
        super().__init__(f"{prefix}{reason}")


class InvalidProviderResponseError(Exception):
    """Raised when a provider response lacks the fields needed to advance a cycle.

    Attributes:
        provider: Provider code
        operation: Operation whose response was being interpreted
        reason: What was missing
    """

    def __init__(self, provider: str, operation: str, reason: str) -> None:
        self.provider = provider
        self.operation = operation
        self.reason = reason
        super().__init__(f"[{provider}/{operation}] {reason}")


# =============================================================================
# Configuration and transport errors
# =============================================================================


class EndpointNotFoundError(Exception):
    """Raised when no active endpoint exists for a provider/operation pair.

    Counts toward the retry budget like any other failed attempt.
    """

    def __init__(self, provider: str, operation: str) -> None:
        self.provider = provider
        self.operation = operation
        super().__init__(f"No active endpoint found for {provider}/{operation}")


class TokenAcquisitionError(Exception):
    """Raised when a provider requires a bearer token and none could be obtained."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Failed to obtain access token for {provider}")


class TemplateRenderError(Exception):
    """Error rendering a payload template (syntax, sandbox, or non-JSON output)."""


class ClearanceRegressionError(Exception):
    """Raised when a clearance status write would move the summary backward."""

    def __init__(self, clearance_id: int, current: str, requested: str) -> None:
        self.clearance_id = clearance_id
        self.current = current
        self.requested = requested
        super().__init__(f"Clearance {clearance_id} cannot move from {current} back to {requested}")
