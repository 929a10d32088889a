"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
clearbridge.core.config.

Import patterns:
    from clearbridge.contracts import Invocation, IntegrationStatus
    from clearbridge.core.config import ClearbridgeSettings
"""

from clearbridge.contracts.enums import (
    ClearanceStatus,
    IntegrationStatus,
    LogKind,
    Operation,
    ProtocolShape,
)
from clearbridge.contracts.errors import (
    AttemptErrorDetail,
    ClearanceRegressionError,
    EndpointNotFoundError,
    ExceptionDetail,
    InvalidProviderResponseError,
    TemplateRenderError,
    TokenAcquisitionError,
    UnresolvableContextError,
)
from clearbridge.contracts.records import (
    BootstrapRequest,
    Clearance,
    ClearanceLink,
    Endpoint,
    Invocation,
    InvocationLogEntry,
    ResolvedContext,
)

__all__ = [
    "AttemptErrorDetail",
    "BootstrapRequest",
    "Clearance",
    "ClearanceLink",
    "ClearanceRegressionError",
    "ClearanceStatus",
    "Endpoint",
    "EndpointNotFoundError",
    "ExceptionDetail",
    "IntegrationStatus",
    "InvalidProviderResponseError",
    "Invocation",
    "InvocationLogEntry",
    "LogKind",
    "Operation",
    "ProtocolShape",
    "ResolvedContext",
    "TemplateRenderError",
    "TokenAcquisitionError",
    "UnresolvableContextError",
]
