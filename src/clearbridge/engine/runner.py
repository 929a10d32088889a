# src/clearbridge/engine/runner.py
"""Invocation runner: drives one attempt of one invocation.

    PENDING/RETRY -> IN_PROGRESS -> SUCCESS | RETRY | PERMANENTLY_FAILED

The PENDING -> IN_PROGRESS compare-and-set (InvocationStore.begin_attempt)
is the single-writer gate; a caller that loses it does nothing. Every attempt
that passes the gate ends in an outcome state: AttemptGuard closes the
attempt as failed (with an error log row) if anything escapes.

There is no HTTP retry inside an attempt. A failed attempt with budget left
becomes RETRY with next_retry_time; the retry sweep re-queues it later.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from types import TracebackType
from typing import TYPE_CHECKING

import structlog

from clearbridge.clients.http import build_url
from clearbridge.clients.tokens import is_auth_failure
from clearbridge.contracts import (
    BootstrapRequest,
    Endpoint,
    EndpointNotFoundError,
    IntegrationStatus,
    InvalidProviderResponseError,
    Invocation,
    LogKind,
    Operation,
    ResolvedContext,
    TokenAcquisitionError,
    UnresolvableContextError,
)
from clearbridge.core.logging import invocation_context
from clearbridge.core.templates import PayloadTemplate
from clearbridge.store._helpers import now

if TYPE_CHECKING:
    from clearbridge.clients.http import HttpResult, ProviderHTTPClient
    from clearbridge.clients.tokens import TokenCache
    from clearbridge.engine.composer import RequestComposer
    from clearbridge.engine.resolver import ContextResolver
    from clearbridge.providers.interpreter import ResponseInterpreter
    from clearbridge.store.catalog import EndpointCatalog
    from clearbridge.store.clearances import ClearanceStore
    from clearbridge.store.invocations import InvocationStore

logger = structlog.get_logger(__name__)

ERROR_PART_LIMIT = 4000
MIN_RETRY_INTERVAL_MINUTES = 1

# Methods whose payload template is rendered into a request body.
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "GET"})


def _truncate(text: str | None) -> str:
    if not text:
        return ""
    return text[:ERROR_PART_LIMIT]


def format_attempt_error(result: HttpResult) -> str:
    """``HTTP <code> | Error: <message> | Body: <body>``, each part capped."""
    return (
        f"HTTP {result.status_code}"
        f" | Error: {_truncate(result.error_message)}"
        f" | Body: {_truncate(result.body)}"
    )


def format_exception(exc: BaseException) -> str:
    return _truncate(f"{type(exc).__name__}: {exc}")


def classify_failure(
    attempt_count: int,
    endpoint: Endpoint | None,
    current_time: datetime,
) -> tuple[IntegrationStatus, datetime | None]:
    """RETRY with its due time while retry budget remains, else PERMANENTLY_FAILED.

    ``attempt_count`` already includes the attempt that just failed, so the
    retries used so far are ``attempt_count - 1``.

    Examples:
        retrigger_count=3: attempts 1-3 fail -> RETRY, attempt 4 fails -> PERMANENTLY_FAILED
        retrigger disabled or no endpoint    -> PERMANENTLY_FAILED on the first failure
    """
    attempted_retries = max(0, attempt_count - 1)
    if endpoint is not None and endpoint.retrigger and attempted_retries < endpoint.retrigger_count:
        interval = max(MIN_RETRY_INTERVAL_MINUTES, endpoint.retrigger_interval_minutes)
        return IntegrationStatus.RETRY, current_time + timedelta(minutes=interval)
    return IntegrationStatus.PERMANENTLY_FAILED, None


class AttemptGuard:
    """Context manager that guarantees a claimed attempt reaches an outcome state.

    Usage::

        with AttemptGuard(runner, invocation) as guard:
            guard.endpoint = ...
            ...
            guard.finish(IntegrationStatus.SUCCESS)

    If the block raises before finish(), __exit__ writes an ERROR log row,
    classifies the failure against the endpoint's retry budget and swallows
    the exception (the error row and the log line are its record).
    UnresolvableContextError always ends PERMANENTLY_FAILED.
    """

    __slots__ = ("_finished", "_invocation", "_runner", "endpoint", "outcome")

    def __init__(self, runner: InvocationRunner, invocation: Invocation) -> None:
        self._runner = runner
        self._invocation = invocation
        self._finished = False
        self.endpoint: Endpoint | None = None
        self.outcome: IntegrationStatus | None = None

    def __enter__(self) -> AttemptGuard:
        return self

    def finish(self, status: IntegrationStatus, next_retry_time: datetime | None = None) -> None:
        self._runner._invocations.finish_attempt(self._invocation.invocation_id, status, next_retry_time=next_retry_time)
        self._finished = True
        self.outcome = status

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        if self._finished or exc_val is None:
            return False
        if not isinstance(exc_val, Exception):
            # KeyboardInterrupt / SystemExit propagate; the row stays IN_PROGRESS
            return False

        invocation = self._invocation
        if isinstance(exc_val, UnresolvableContextError):
            logger.error("Invocation context unresolvable; not retrying", reason=exc_val.reason)
            status, next_retry = IntegrationStatus.PERMANENTLY_FAILED, None
        else:
            logger.error("Invocation attempt raised", error=str(exc_val), error_type=type(exc_val).__name__, exc_info=exc_val)
            endpoint = self.endpoint or self._runner._catalog.get_latest(invocation.provider_code, invocation.operation)
            status, next_retry = classify_failure(invocation.attempt_count, endpoint, self._runner._clock())

        self._runner._invocations.append_log(
            invocation.invocation_id,
            kind=LogKind.ERROR,
            status=IntegrationStatus.FAILED,
            response_received_on=now(),
            error_details=format_exception(exc_val),
        )
        self.finish(status, next_retry)
        self._runner._log_outcome(invocation, status, next_retry)
        return True


class InvocationRunner:
    """Executes single attempts of invocations."""

    def __init__(
        self,
        *,
        invocations: InvocationStore,
        clearances: ClearanceStore,
        catalog: EndpointCatalog,
        resolver: ContextResolver,
        composer: RequestComposer,
        interpreter: ResponseInterpreter,
        http_client: ProviderHTTPClient,
        tokens: TokenCache,
        clock: Callable[[], datetime] = now,
    ) -> None:
        self._invocations = invocations
        self._clearances = clearances
        self._catalog = catalog
        self._resolver = resolver
        self._composer = composer
        self._interpreter = interpreter
        self._http = http_client
        self._tokens = tokens
        self._clock = clock
        self._templates: dict[str, PayloadTemplate] = {}

    def run(self, invocation_id: int, bootstrap: BootstrapRequest | None = None) -> bool:
        """Run one attempt. Returns True only when the provider call succeeded.

        A missing invocation, or one that is not PENDING/RETRY, is a no-op.
        """
        current = self._invocations.get(invocation_id)
        if current is None:
            logger.info("Invocation not found; nothing to run", invocation_id=invocation_id)
            return False

        claimed = self._invocations.begin_attempt(invocation_id)
        if claimed is None:
            logger.info(
                "Invocation not startable; already handled",
                invocation_id=invocation_id,
                status=current.status.value,
            )
            return False

        with invocation_context(claimed.invocation_id, claimed.provider_code, claimed.operation.value):
            logger.info("Attempt started", attempt=claimed.attempt_count)
            with AttemptGuard(self, claimed) as guard:
                endpoint = self._catalog.get_active(claimed.provider_code, claimed.operation)
                if endpoint is None:
                    raise EndpointNotFoundError(claimed.provider_code, claimed.operation.value)
                guard.endpoint = endpoint
                self._attempt(claimed, endpoint, bootstrap, guard)
            return guard.outcome == IntegrationStatus.SUCCESS

    def _attempt(
        self,
        invocation: Invocation,
        endpoint: Endpoint,
        bootstrap: BootstrapRequest | None,
        guard: AttemptGuard,
    ) -> None:
        context = self._resolver.resolve(invocation, bootstrap)
        bundle = self._composer.compose(endpoint, context)

        body: str | None = None
        if endpoint.http_method.upper() in _BODY_METHODS and endpoint.payload_template and endpoint.payload_template.strip():
            body = self._template(endpoint.payload_template).render(bundle)

        url = build_url(endpoint.base_url, endpoint.path_template, self._path_id(invocation, endpoint, context))
        headers: dict[str, str] = {}
        token = self._tokens.get_token(invocation.provider_code)
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        elif self._tokens.requires_authentication(invocation.provider_code):
            raise TokenAcquisitionError(invocation.provider_code)

        self._invocations.append_log(
            invocation.invocation_id,
            kind=LogKind.REQUEST,
            status=IntegrationStatus.IN_PROGRESS,
            request_payload=body,
            request_sent_on=now(),
        )
        result = self._http.send(
            endpoint.http_method,
            url,
            body=body,
            headers=headers,
            timeout=float(endpoint.timeout_seconds),
        )
        received = now()

        if is_auth_failure(result.status_code, result.body):
            self._tokens.invalidate(invocation.provider_code)

        if result.is_success:
            self._invocations.append_log(
                invocation.invocation_id,
                kind=LogKind.RESPONSE,
                status=IntegrationStatus.SUCCESS,
                response_payload=result.body,
                response_status_code=result.status_code,
                response_received_on=received,
                response_time_ms=result.elapsed_ms,
            )
            self._interpret(invocation, result.body, context, body)
            guard.finish(IntegrationStatus.SUCCESS)
            self._log_outcome(invocation, IntegrationStatus.SUCCESS, None)
            return

        status, next_retry = classify_failure(invocation.attempt_count, endpoint, self._clock())
        self._invocations.append_log(
            invocation.invocation_id,
            kind=LogKind.RESPONSE,
            status=IntegrationStatus.PERMANENTLY_FAILED if status == IntegrationStatus.PERMANENTLY_FAILED else IntegrationStatus.FAILED,
            response_payload=result.body,
            response_status_code=result.status_code,
            response_received_on=received,
            response_time_ms=result.elapsed_ms,
            error_details=format_attempt_error(result),
        )
        guard.finish(status, next_retry)
        self._log_outcome(invocation, status, next_retry, status_code=result.status_code)

    def _interpret(self, invocation: Invocation, response_body: str | None, context: ResolvedContext, request_body: str | None) -> None:
        try:
            advanced = self._interpreter.interpret(invocation, response_body, resolved=context, request_body=request_body)
        except InvalidProviderResponseError as e:
            # The call itself succeeded and the body is in the log; only the mapping failed.
            logger.error("Provider response could not be applied", reason=e.reason)
            return
        except Exception as e:
            # A 2xx is final whatever happens here; the body is already logged
            logger.error(
                "Applying provider response raised",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return
        logger.info("Response interpreted", advanced=advanced)

    def _template(self, template_string: str) -> PayloadTemplate:
        template = self._templates.get(template_string)
        if template is None:
            template = PayloadTemplate(template_string)
            self._templates[template_string] = template
        return template

    def _path_id(self, invocation: Invocation, endpoint: Endpoint, context: ResolvedContext) -> str | None:
        """Provider id substituted for ``{id}`` in the path template."""
        if "{id}" not in endpoint.path_template:
            return None
        if invocation.operation == Operation.CREATE_CLEARANCE_REQUEST:
            raise ValueError(f"Path template {endpoint.path_template!r} has {{id}} but create has no provider id")

        link = self._clearances.latest_link(
            subject_id=context.subject_id,
            program_id=context.program_id,
            provider_code=invocation.provider_code,
        )
        if invocation.operation == Operation.GET_CLEARANCE_STATUS:
            value = link.provider_request_id if link is not None else None
        else:
            value = link.provider_response_id if link is not None else None
        if not value:
            raise ValueError(
                f"No provider id recorded for {invocation.operation.value} "
                f"(subject={context.subject_id}, program={context.program_id})"
            )
        return value

    def _log_outcome(
        self,
        invocation: Invocation,
        status: IntegrationStatus,
        next_retry: datetime | None,
        *,
        status_code: int | None = None,
    ) -> None:
        if status == IntegrationStatus.SUCCESS:
            logger.info("Attempt succeeded", attempt=invocation.attempt_count)
        elif status == IntegrationStatus.RETRY:
            logger.warning(
                "Attempt failed; retry scheduled",
                attempt=invocation.attempt_count,
                status_code=status_code,
                next_retry_time=next_retry.isoformat() if next_retry else None,
            )
        else:
            logger.error("Attempt failed permanently", attempt=invocation.attempt_count, status_code=status_code)
