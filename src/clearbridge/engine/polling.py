# src/clearbridge/engine/polling.py
"""Status and acknowledge polling.

Clearances stuck below their provider's terminal status are driven forward
by re-running (or creating) the invocation for the next cycle:

- CLEARANCE_REQUESTED with a provider request id  -> GET_CLEARANCE_STATUS
- CLEARED (three-cycle only) with a response id    -> ACKNOWLEDGE_RESPONSE

An existing invocation is re-used while its attempt count is under the
endpoint's retrigger budget; PERMANENTLY_FAILED rows are left to people.
Nothing is created or re-run unless the endpoint is active and retriggers.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from clearbridge.contracts import (
    BootstrapRequest,
    Clearance,
    ClearanceLink,
    ClearanceStatus,
    IntegrationStatus,
    Invocation,
    Operation,
    ProtocolShape,
    ResolvedContext,
)

if TYPE_CHECKING:
    from clearbridge.engine.resolver import ContextResolver
    from clearbridge.engine.runner import InvocationRunner
    from clearbridge.providers.registry import ProviderRegistry
    from clearbridge.store.catalog import EndpointCatalog
    from clearbridge.store.clearances import ClearanceStore
    from clearbridge.store.invocations import InvocationStore

logger = structlog.get_logger(__name__)

CreateInvocation = Callable[[int, int, str, Operation], int]

# Statuses the poller never touches: someone else is running it, or only a
# person may revisit it, or the retry sweep owns its timing.
_NOT_POLLABLE = frozenset({IntegrationStatus.IN_PROGRESS, IntegrationStatus.PERMANENTLY_FAILED, IntegrationStatus.RETRY})


class StatusPoller:
    """Drives status and acknowledge cycles for open clearances."""

    def __init__(
        self,
        *,
        invocations: InvocationStore,
        clearances: ClearanceStore,
        catalog: EndpointCatalog,
        resolver: ContextResolver,
        registry: ProviderRegistry,
        runner: InvocationRunner,
        create_invocation: CreateInvocation,
    ) -> None:
        self._invocations = invocations
        self._clearances = clearances
        self._catalog = catalog
        self._resolver = resolver
        self._registry = registry
        self._runner = runner
        self._create_invocation = create_invocation
        self._candidates: dict[tuple[str, Operation], list[tuple[Invocation, ResolvedContext]]] = {}

    def process_open_clearances(self) -> bool:
        """Status sweep over every clearance still at CLEARANCE_REQUESTED."""
        return self._sweep(ClearanceStatus.CLEARANCE_REQUESTED, Operation.GET_CLEARANCE_STATUS)

    def process_acknowledge(self) -> bool:
        """Acknowledge sweep over CLEARED clearances of three-cycle providers."""
        return self._sweep(ClearanceStatus.CLEARED, Operation.ACKNOWLEDGE_RESPONSE)

    def _sweep(self, status: ClearanceStatus, operation: Operation) -> bool:
        try:
            self._candidates = {}
            clearances = self._clearances.list_clearances(status)
            logger.info("Poll sweep started", operation=operation.value, clearances=len(clearances))
            for clearance in clearances:
                try:
                    self._poll(clearance, operation)
                except Exception as e:
                    # One clearance never stops the sweep
                    logger.error(
                        "Polling clearance failed",
                        clearance_id=clearance.clearance_id,
                        provider=clearance.provider_code,
                        operation=operation.value,
                        error=str(e),
                        exc_info=True,
                    )
            return True
        except Exception as e:
            logger.error("Poll sweep failed", operation=operation.value, error=str(e), exc_info=True)
            return False
        finally:
            self._candidates = {}

    def _poll(self, clearance: Clearance, operation: Operation) -> None:
        code = clearance.provider_code
        profile = self._registry.find(code)
        if profile is None:
            logger.warning("Clearance for unregistered provider; skipped", provider=code, clearance_id=clearance.clearance_id)
            return
        if operation == Operation.ACKNOWLEDGE_RESPONSE and profile.protocol != ProtocolShape.THREE_CYCLE:
            return

        link = self._link_for(clearance)
        if not self._ready(link, operation):
            return
        assert link is not None  # narrowed by _ready
        context = ResolvedContext(subject_id=link.subject_id, program_id=link.program_id)

        # Without an active, retriggering endpoint nothing is created or re-run
        endpoint = self._catalog.get_active(code, operation)
        if endpoint is None:
            logger.warning("No active endpoint; poll skipped", provider=code, operation=operation.value)
            return
        if not endpoint.retrigger or endpoint.retrigger_count <= 0:
            logger.debug("Endpoint does not retrigger; poll skipped", provider=code, operation=operation.value)
            return

        existing = self._find_existing(code, operation, context)
        if existing is None:
            invocation_id = self._create_invocation(link.subject_id, link.program_id, code, operation)
            logger.info("Poll invocation created", invocation_id=invocation_id, provider=code, operation=operation.value)
            return

        if existing.status in _NOT_POLLABLE:
            logger.debug("Poll invocation not revisitable", invocation_id=existing.invocation_id, status=existing.status.value)
            return
        if existing.attempt_count >= endpoint.retrigger_count:
            logger.info(
                "Poll budget exhausted; skipped",
                invocation_id=existing.invocation_id,
                attempt=existing.attempt_count,
                retrigger_count=endpoint.retrigger_count,
            )
            return

        if not self._invocations.requeue(existing.invocation_id):
            logger.info("Poll invocation changed state; skipped", invocation_id=existing.invocation_id)
            return
        bootstrap = BootstrapRequest(
            subject_id=context.subject_id,
            program_id=context.program_id,
            provider_code=code,
            operation=operation,
        )
        self._runner.run(existing.invocation_id, bootstrap)

    def _link_for(self, clearance: Clearance) -> ClearanceLink | None:
        return self._clearances.latest_link(
            subject_id=clearance.subject_id,
            program_id=clearance.program_id,
            provider_code=clearance.provider_code,
        )

    @staticmethod
    def _ready(link: ClearanceLink | None, operation: Operation) -> bool:
        if link is None:
            return False
        if operation == Operation.GET_CLEARANCE_STATUS:
            # Cycle 1 not done yet, or already answered
            return bool(link.provider_request_id) and not link.is_completed
        return bool(link.provider_response_id)

    def _find_existing(self, code: str, operation: Operation, context: ResolvedContext) -> Invocation | None:
        """Most recently updated invocation whose logged request decodes to ``context``."""
        key = (code, operation)
        candidates = self._candidates.get(key)
        if candidates is None:
            candidates = []
            for invocation in self._invocations.find_by_provider_operation(code, operation):
                resolved = self._resolver.try_resolve(invocation)
                if resolved is not None:
                    candidates.append((invocation, resolved))
            self._candidates[key] = candidates
        for invocation, resolved in candidates:
            if resolved == context:
                return self._invocations.get(invocation.invocation_id)
        return None
