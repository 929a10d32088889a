# src/clearbridge/engine/manager.py
"""Caller-facing operations of the invocation engine.

Creation failures propagate to the caller. Every other operation is a
boundary: internal errors are logged and reported as False.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from clearbridge.contracts import BootstrapRequest, ClearanceStatus, Operation, ProtocolShape
from clearbridge.engine.polling import StatusPoller
from clearbridge.store._helpers import now

if TYPE_CHECKING:
    from clearbridge.engine.resolver import ContextResolver
    from clearbridge.engine.runner import InvocationRunner
    from clearbridge.providers.registry import ProviderRegistry
    from clearbridge.store.catalog import EndpointCatalog
    from clearbridge.store.clearances import ClearanceStore
    from clearbridge.store.invocations import InvocationStore

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_BATCH_SIZE = 200


class InvocationManager:
    """Creates invocations and runs the periodic sweeps."""

    def __init__(
        self,
        *,
        invocations: InvocationStore,
        clearances: ClearanceStore,
        catalog: EndpointCatalog,
        resolver: ContextResolver,
        registry: ProviderRegistry,
        runner: InvocationRunner,
        batch_size: int = DEFAULT_RETRY_BATCH_SIZE,
        clock: Callable[[], datetime] = now,
    ) -> None:
        self._invocations = invocations
        self._clearances = clearances
        self._registry = registry
        self._runner = runner
        self._batch_size = batch_size
        self._clock = clock
        self.poller = StatusPoller(
            invocations=invocations,
            clearances=clearances,
            catalog=catalog,
            resolver=resolver,
            registry=registry,
            runner=runner,
            create_invocation=self.create_invocation,
        )

    # === Creation and direct execution ===

    def create_invocation(
        self,
        subject_id: int,
        program_id: int,
        provider_code: str,
        operation: Operation = Operation.CREATE_CLEARANCE_REQUEST,
    ) -> int:
        """Create a PENDING invocation and run its first attempt immediately.

        The attempt outcome is recorded on the invocation; only a failure to
        create the row is raised.
        """
        code = provider_code.strip().upper()
        if not code:
            raise ValueError("provider_code must not be blank")
        invocation = self._invocations.create(code, operation)
        logger.info(
            "Invocation created",
            invocation_id=invocation.invocation_id,
            provider=code,
            operation=operation.value,
            subject_id=subject_id,
            program_id=program_id,
        )
        bootstrap = BootstrapRequest(subject_id=subject_id, program_id=program_id, provider_code=code, operation=operation)
        self._runner.run(invocation.invocation_id, bootstrap)
        return invocation.invocation_id

    def run_invocation(self, invocation_id: int, bootstrap: BootstrapRequest | None = None) -> bool:
        try:
            return self._runner.run(invocation_id, bootstrap)
        except Exception as e:
            logger.error("Invocation run failed", invocation_id=invocation_id, error=str(e), exc_info=True)
            return False

    # === Sweeps ===

    def process_pending_invocations(self) -> bool:
        """Run one attempt of every PENDING invocation, oldest first."""
        try:
            pending = self._invocations.list_pending()
            logger.info("Pending sweep started", count=len(pending))
            for invocation in pending:
                self._runner.run(invocation.invocation_id)
            return True
        except Exception as e:
            logger.error("Pending sweep failed", error=str(e), exc_info=True)
            return False

    def process_retryable_invocations(self) -> bool:
        """Re-queue and run RETRY invocations whose next_retry_time has passed."""
        try:
            due = self._invocations.list_due_retries(self._clock(), self._batch_size)
            logger.info("Retry sweep started", count=len(due), batch_size=self._batch_size)
            for invocation in due:
                if not self._invocations.requeue_due_retry(invocation.invocation_id):
                    logger.info("Invocation left RETRY before requeue; skipped", invocation_id=invocation.invocation_id)
                    continue
                self._runner.run(invocation.invocation_id)
            return True
        except Exception as e:
            logger.error("Retry sweep failed", error=str(e), exc_info=True)
            return False

    def process_open_clearances(self) -> bool:
        return self.poller.process_open_clearances()

    def process_acknowledge(self) -> bool:
        return self.poller.process_acknowledge()

    # === Orchestration ===

    def start_clearance_cycle(self, subject_id: int, program_id: int, provider_code: str) -> bool:
        """Begin a provider cycle with a create invocation."""
        try:
            invocation_id = self.create_invocation(subject_id, program_id, provider_code)
        except Exception as e:
            logger.error(
                "Clearance cycle start failed",
                subject_id=subject_id,
                program_id=program_id,
                provider=provider_code,
                error=str(e),
                exc_info=True,
            )
            return False
        invocation = self._invocations.get(invocation_id)
        logger.info(
            "Clearance cycle started",
            invocation_id=invocation_id,
            status=invocation.status.value if invocation is not None else None,
        )
        return True

    def check_and_progress_clearance(self, subject_id: int, program_id: int, provider_code: str) -> bool:
        """Create whichever invocation the clearance needs next.

        Request id on an incomplete link -> status check. Response id with the
        clearance not yet DELIVERED (three-cycle providers) -> acknowledge.
        """
        code = provider_code.strip().upper()
        try:
            link = self._clearances.latest_link(subject_id=subject_id, program_id=program_id, provider_code=code)
            clearance = self._clearances.get_clearance(subject_id, code)
            if link is None or clearance is None:
                logger.warning("No clearance cycle to progress", subject_id=subject_id, program_id=program_id, provider=code)
                return False

            if link.provider_request_id and not link.is_completed:
                self.create_invocation(subject_id, program_id, code, Operation.GET_CLEARANCE_STATUS)
            elif link.provider_response_id and clearance.status_code != ClearanceStatus.DELIVERED and self._acknowledges(code):
                self.create_invocation(subject_id, program_id, code, Operation.ACKNOWLEDGE_RESPONSE)
            else:
                logger.info("Clearance cycle complete", subject_id=subject_id, program_id=program_id, provider=code)
            return True
        except Exception as e:
            logger.error(
                "Clearance progress failed",
                subject_id=subject_id,
                program_id=program_id,
                provider=code,
                error=str(e),
                exc_info=True,
            )
            return False

    def _acknowledges(self, provider_code: str) -> bool:
        profile = self._registry.find(provider_code)
        return profile is not None and profile.protocol == ProtocolShape.THREE_CYCLE
