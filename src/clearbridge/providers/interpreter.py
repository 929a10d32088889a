# src/clearbridge/providers/interpreter.py
"""Response interpreter: routes a successful provider response to its profile."""

from __future__ import annotations

import structlog

from clearbridge.contracts import Invocation, Operation, ResolvedContext
from clearbridge.providers.base import InterpretationContext
from clearbridge.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)


class ResponseInterpreter:
    """Dispatches by operation to the provider profile's cycle handler.

    An unregistered provider is logged and ignored: the response is already
    in the invocation log, so nothing is lost.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def interpret(
        self,
        invocation: Invocation,
        response_body: str | None,
        *,
        resolved: ResolvedContext | None = None,
        request_body: str | None = None,
    ) -> bool:
        """Apply a successful response. Returns whether clearance state advanced.

        Raises:
            InvalidProviderResponseError: If a create response lacks its request id
        """
        profile = self._registry.find(invocation.provider_code)
        if profile is None:
            logger.warning(
                "No profile registered for provider; response not interpreted",
                provider=invocation.provider_code,
                invocation_id=invocation.invocation_id,
            )
            return False

        ctx = InterpretationContext(
            invocation=invocation,
            response_body=response_body,
            resolved=resolved,
            request_body=request_body,
        )
        match invocation.operation:
            case Operation.CREATE_CLEARANCE_REQUEST:
                return profile.handle_create(ctx)
            case Operation.GET_CLEARANCE_STATUS:
                return profile.handle_status(ctx)
            case Operation.ACKNOWLEDGE_RESPONSE | Operation.SET_STATUS_DELIVERED:
                return profile.handle_ack(ctx)
