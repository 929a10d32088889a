# src/clearbridge/providers/base.py
"""Provider profile: how one provider's clearance protocol is advanced.

A profile owns everything provider-specific:
- building the synthetic ``ProviderRequest`` model for payload templates
- decoding internal identity from provider-encoded fields in a request body
- reading correlation ids out of responses
- applying create / status / acknowledge results to clearance state

The base class is the generic, configuration-onboarded provider. Built-in
providers subclass it and override only what their wire format needs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

import structlog

from clearbridge.contracts import (
    ClearanceLink,
    ClearanceRegressionError,
    ClearanceStatus,
    InvalidProviderResponseError,
    Invocation,
    ProtocolShape,
    ResolvedContext,
)
from clearbridge.core.keybag import KeyBag, parse_json
from clearbridge.providers.extract import ResponseFieldExtractor, ResponseFields, find_any_depth
from clearbridge.store._helpers import now

if TYPE_CHECKING:
    from clearbridge.store.clearances import ClearanceStore

logger = structlog.get_logger(__name__)

ACKNOWLEDGEMENT_REMARK = "Acknowledgement posted"
COMPLETE_OUTCOME = "Complete"

# Raw model name -> row mapping (None when the row could not be loaded).
EnrichmentSources = Mapping[str, Mapping[str, Any] | None]


@dataclass(frozen=True)
class InterpretationContext:
    """Everything a profile needs to apply one successful response."""

    invocation: Invocation
    response_body: str | None
    resolved: ResolvedContext | None = None
    request_body: str | None = None


@dataclass(frozen=True)
class StatusResultItem:
    """One entry of a multi-result status response, decoded to internal keys."""

    response_id: str | None
    subject_ids: tuple[int, ...]
    program_id: int | None = None
    assignment_id: int | None = None
    status_label: str | None = None
    status_date: datetime | None = None
    reference: dict[str, str] = field(default_factory=dict)


def source_value(sources: EnrichmentSources, model: str, *names: str) -> Any:
    """First non-blank column of a source model, or "" when absent.

    Never raises: a missing model or column degrades to an empty value.
    """
    row = sources.get(model)
    if row is None:
        return ""
    for name in names:
        value = row.get(name)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return ""


def iso_date(value: Any) -> str:
    """Canonical ``YYYY-MM-DD`` for dates, datetimes and ISO strings; "" otherwise."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return datetime.fromisoformat(text).date().isoformat()
        except ValueError:
            logger.warning("Unparseable date left as-is", value=text)
            return text
    return ""


class ProviderProfile:
    """Generic provider: multi-path extraction, fixed cycle shape from settings."""

    # Logged (never enforced) when blank after enrichment.
    mandatory_fields: tuple[str, ...] = ("programId", "subjectId")

    # Names searched (any depth) in the current request body to find the
    # provider request id a single-result status call was made for.
    request_id_keys: tuple[str, ...] = ("clearanceRequestId", "requestId", "externalRequestId")

    def __init__(
        self,
        code: str,
        protocol: ProtocolShape,
        store: ClearanceStore,
        extractor: ResponseFieldExtractor | None = None,
    ) -> None:
        self.code = code.upper()
        self.protocol = protocol
        self._store = store
        self._extractor = extractor or ResponseFieldExtractor()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, protocol={self.protocol.value!r})"

    @property
    def completion_status(self) -> ClearanceStatus:
        """Clearance status reached when the status cycle completes."""
        if self.protocol == ProtocolShape.THREE_CYCLE:
            return ClearanceStatus.CLEARED
        return ClearanceStatus.DELIVERED

    # === Composition ===

    def enrich(self, sources: EnrichmentSources, context: ResolvedContext) -> dict[str, Any]:
        """Fields of the synthetic ProviderRequest model."""
        return {
            "programId": context.program_id,
            "subjectId": context.subject_id,
            "indexNo": source_value(sources, "Subject", "index_number"),
        }

    def missing_mandatory(self, provider_request: Mapping[str, Any]) -> list[str]:
        missing = []
        for name in self.mandatory_fields:
            value = provider_request.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    # === Resolution ===

    def decode_identity(self, bag: KeyBag) -> tuple[int | None, int | None]:
        """(subject_id, program_id) encoded in provider-specific fields.

        The generic provider encodes nothing beyond the plain id fields the
        resolver already reads.
        """
        return None, None

    # === Interpretation ===

    def extract_request_id(self, parsed: Any) -> str | None:
        return self._extractor.extract_from(parsed, self.code).request_id

    def create_remark(self, parsed: Any, request_id: str) -> str:
        return f"clearanceRequestId={request_id}"

    def status_results(self, parsed: Any) -> list[StatusResultItem] | None:
        """Decoded entries of a multi-result status response; None for single-result."""
        return None

    def single_status_fields(self, parsed: Any) -> ResponseFields:
        return self._extractor.extract_from(parsed, self.code)

    def handle_create(self, ctx: InterpretationContext) -> bool:
        """Cycle 1: record the provider request id against the subject/program pair.

        Raises:
            InvalidProviderResponseError: If no request id can be found
        """
        operation = ctx.invocation.operation.value
        parsed = parse_json(ctx.response_body)
        request_id = self.extract_request_id(parsed) if parsed is not None else None
        if not request_id:
            if parsed is not None:
                self._extractor.log_missing(parsed, self.code, "request_id")
            raise InvalidProviderResponseError(self.code, operation, "response carries no provider request id")
        if ctx.resolved is None:
            raise InvalidProviderResponseError(self.code, operation, "no subject/program context for create response")

        subject_id, program_id = ctx.resolved.subject_id, ctx.resolved.program_id
        existing = self._store.find_open_link_by_request_id(request_id, self.code)
        if existing is not None and existing.subject_id == subject_id and existing.program_id == program_id:
            logger.info("Clearance link already recorded", provider=self.code, request_id=request_id, link_id=existing.link_id)
        else:
            program = self._store.get_program(program_id)
            link = self._store.create_link(
                subject_id=subject_id,
                program_id=program_id,
                provider_code=self.code,
                provider_request_id=request_id,
                assignment_id=program["assignment_id"] if program is not None else None,
            )
            logger.info("Clearance link created", provider=self.code, request_id=request_id, link_id=link.link_id)

        clearance = self._store.record_requested(
            subject_id=subject_id,
            program_id=program_id,
            provider_code=self.code,
            remark=self.create_remark(parsed, request_id),
        )
        logger.info(
            "Create cycle complete",
            provider=self.code,
            subject_id=subject_id,
            program_id=program_id,
            clearance_status=clearance.status_code.value,
        )
        return True

    def handle_status(self, ctx: InterpretationContext) -> bool:
        """Cycle 2: complete the matching link(s) and advance the clearance.

        Returns True when at least one link was completed.
        """
        parsed = parse_json(ctx.response_body)
        if parsed is None:
            logger.warning("Status response has no JSON body; nothing to apply", provider=self.code)
            return False

        items = self.status_results(parsed)
        if items is not None:
            return self._apply_batch(items)

        fields = self.single_status_fields(parsed)
        if not fields.response_id:
            self._extractor.log_missing(parsed, self.code, "response_id")
            logger.info("Status not final yet; clearance unchanged", provider=self.code, status=fields.status_label)
            return False

        link = self._link_for_single_status(ctx)
        if link is None:
            logger.warning(
                "No open clearance link for status response",
                provider=self.code,
                response_id=fields.response_id,
            )
            return False
        return self.complete(link, fields.response_id, fields.status_date)

    def handle_ack(self, ctx: InterpretationContext) -> bool:
        """Cycle 3: mark the clearance DELIVERED. A no-op for two-cycle providers."""
        if self.protocol != ProtocolShape.THREE_CYCLE:
            logger.info("Acknowledge ignored for two-cycle provider", provider=self.code)
            return True
        if ctx.resolved is None:
            logger.warning("Acknowledge response without subject context", provider=self.code)
            return False

        clearance = self._store.get_clearance(ctx.resolved.subject_id, self.code)
        if clearance is None:
            logger.warning("No clearance to acknowledge", provider=self.code, subject_id=ctx.resolved.subject_id)
            return True
        try:
            self._store.advance(
                clearance.clearance_id,
                ClearanceStatus.DELIVERED,
                additional_remark=ACKNOWLEDGEMENT_REMARK,
            )
        except ClearanceRegressionError as e:
            logger.warning("Clearance status not moved backward", provider=self.code, error=str(e))
            return False
        logger.info("Acknowledge cycle complete", provider=self.code, clearance_id=clearance.clearance_id)
        return True

    def complete(self, link: ClearanceLink, response_id: str | None, status_date: datetime | None) -> bool:
        """Complete one link and move its clearance to the completion status.

        Returns False when the link had already been completed.
        """
        completion = status_date or now()
        if not self._store.complete_link(link.link_id, provider_response_id=response_id, completion_date=completion):
            logger.info("Clearance link already completed; result skipped", provider=self.code, link_id=link.link_id)
            return False

        clearance = self._store.get_clearance(link.subject_id, self.code)
        if clearance is None:
            logger.warning("Clearance summary missing for completed link", provider=self.code, subject_id=link.subject_id)
            return True

        remark = f"clearanceResponseId={response_id}" if response_id else None
        target = self.completion_status
        try:
            if target == ClearanceStatus.DELIVERED:
                self._store.advance(
                    clearance.clearance_id,
                    target,
                    outcome=COMPLETE_OUTCOME,
                    completion_date=completion,
                    link_remark=remark,
                )
            else:
                self._store.advance(clearance.clearance_id, target, link_remark=remark)
        except ClearanceRegressionError as e:
            logger.warning("Clearance status not moved backward", provider=self.code, error=str(e))
            return True

        logger.info(
            "Status cycle complete",
            provider=self.code,
            link_id=link.link_id,
            response_id=response_id,
            clearance_status=target.value,
        )
        return True

    def _link_for_single_status(self, ctx: InterpretationContext) -> ClearanceLink | None:
        parsed_request = parse_json(ctx.request_body)
        if parsed_request is not None:
            request_id = find_any_depth(parsed_request, *self.request_id_keys)
            if request_id is not None:
                link = self._store.find_open_link_by_request_id(request_id, self.code)
                if link is not None:
                    return link
        if ctx.resolved is not None:
            links = self._store.find_open_links(ctx.resolved.subject_id, self.code, program_id=ctx.resolved.program_id)
            if links:
                return links[0]
        return None

    def _match_batch_item(self, item: StatusResultItem) -> ClearanceLink | None:
        candidates: list[ClearanceLink] = []
        for subject_id in item.subject_ids:
            candidates.extend(self._store.find_open_links(subject_id, self.code, program_id=item.program_id))
        if not candidates:
            logger.info("No open clearance link for batch result; skipped", provider=self.code, **item.reference)
            return None
        if len(candidates) > 1:
            logger.warning(
                "Ambiguous batch result; skipped",
                provider=self.code,
                link_ids=[c.link_id for c in candidates],
                **item.reference,
            )
            return None
        return candidates[0]

    def _apply_batch(self, items: list[StatusResultItem]) -> bool:
        processed = 0
        for item in items:
            try:
                link = self._match_batch_item(item)
                if link is not None and self.complete(link, item.response_id, item.status_date):
                    processed += 1
            except Exception as e:
                # One bad result never aborts the batch
                logger.error("Batch result failed", provider=self.code, error=str(e), exc_info=True, **item.reference)
        logger.info("Batch status applied", provider=self.code, processed=processed, total=len(items))
        return processed > 0
