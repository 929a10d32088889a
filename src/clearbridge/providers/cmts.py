# src/clearbridge/providers/cmts.py
"""CMTS: three-cycle provider (create, status CLEARED, acknowledge DELIVERED)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from clearbridge.contracts import ProtocolShape, ResolvedContext
from clearbridge.providers.base import EnrichmentSources, ProviderProfile, iso_date, source_value
from clearbridge.providers.extract import ResponseFieldExtractor
from clearbridge.store._helpers import now

if TYPE_CHECKING:
    from clearbridge.store.clearances import ClearanceStore

CMTS_CODE = "CMTS"


class CmtsProfile(ProviderProfile):
    """CMTS speaks camelCase JSON keyed by clearanceRequestId / clearanceResponseId."""

    mandatory_fields = ("programId", "subjectId")
    request_id_keys = ("clearanceRequestId", "requestId")

    def __init__(self, store: ClearanceStore, extractor: ResponseFieldExtractor | None = None) -> None:
        super().__init__(CMTS_CODE, ProtocolShape.THREE_CYCLE, store, extractor)

    def enrich(self, sources: EnrichmentSources, context: ResolvedContext) -> dict[str, Any]:
        return {
            "programId": context.program_id,
            "subjectId": context.subject_id,
            "indexNo": source_value(sources, "Subject", "index_number"),
            "firstName": source_value(sources, "Subject", "first_name") or source_value(sources, "User", "first_name"),
            "middleName": source_value(sources, "Subject", "middle_name") or source_value(sources, "User", "middle_name"),
            "lastName": source_value(sources, "Subject", "last_name") or source_value(sources, "User", "last_name"),
            "dateOfBirth": iso_date(
                source_value(sources, "Subject", "date_of_birth") or source_value(sources, "User", "date_of_birth")
            ),
            "nationality": source_value(sources, "Subject", "nationality_code")
            or source_value(sources, "User", "nationality_iso_code"),
            "requestedDate": iso_date(source_value(sources, "Program", "request_date") or now()),
        }
