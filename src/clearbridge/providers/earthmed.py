# src/clearbridge/providers/earthmed.py
"""EARTHMED: two-cycle provider (create, status DELIVERED) behind OAuth.

Wire format:

    create  -> {"IsSuccess": true, "Result": {"Id": 812, "IndexNumber": "100234"}}
    status  -> {"IsSuccess": true, "Result": {...}}            single result
               {"IsSuccess": true, "Result": [{...}, {...}]}   batch

Internal identity travels in ``ReferenceNumber = "<assignmentId>_<programId>"``
and the subject's ``IndexNumber``; EARTHMED never sees our primary keys as
such.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from clearbridge.contracts import InvalidProviderResponseError, Operation, ProtocolShape, ResolvedContext
from clearbridge.core.keybag import KeyBag
from clearbridge.providers.base import (
    EnrichmentSources,
    ProviderProfile,
    StatusResultItem,
    iso_date,
    source_value,
)
from clearbridge.providers.extract import ResponseFieldExtractor, ResponseFields, as_text, parse_date

if TYPE_CHECKING:
    from clearbridge.store.clearances import ClearanceStore

logger = structlog.get_logger(__name__)

EARTHMED_CODE = "EARTHMED"
REFERENCE_SEPARATOR = "_"


def encode_reference(assignment_id: Any, program_id: Any) -> str:
    """ReferenceNumber for a program: ``"<assignmentId>_<programId>"``."""
    return f"{assignment_id}{REFERENCE_SEPARATOR}{program_id}"


def decode_reference(reference: str | None) -> tuple[int | None, int | None]:
    """(assignment_id, program_id) from a ReferenceNumber; (None, None) when malformed.

    Examples:
        >>> decode_reference("12_345")
        (12, 345)
        >>> decode_reference("12-345")
        (None, None)
    """
    if reference is None:
        return None, None
    parts = reference.strip().split(REFERENCE_SEPARATOR)
    if len(parts) != 2 or not all(part.isascii() and part.isdigit() for part in parts):
        return None, None
    return int(parts[0]), int(parts[1])


def _result_entries(parsed: Any) -> list[dict[str, Any]]:
    if not isinstance(parsed, dict):
        return []
    result = parsed.get("Result")
    if isinstance(result, dict):
        return [result]
    if isinstance(result, list):
        return [entry for entry in result if isinstance(entry, dict)]
    return []


class EarthMedProfile(ProviderProfile):
    """EARTHMED profile."""

    mandatory_fields = ("IndexNumber", "FirstName", "LastName", "ReferenceNumber")
    request_id_keys = ("Id",)

    def __init__(self, store: ClearanceStore, extractor: ResponseFieldExtractor | None = None) -> None:
        super().__init__(EARTHMED_CODE, ProtocolShape.TWO_CYCLE, store, extractor)

    # === Composition ===

    def enrich(self, sources: EnrichmentSources, context: ResolvedContext) -> dict[str, Any]:
        assignment_id = source_value(sources, "Program", "assignment_id") or source_value(sources, "Assignment", "id")
        return {
            "IndexNumber": source_value(sources, "Subject", "index_number"),
            "FirstName": source_value(sources, "Subject", "first_name") or source_value(sources, "User", "first_name"),
            "MiddleName": source_value(sources, "Subject", "middle_name") or source_value(sources, "User", "middle_name"),
            "LastName": source_value(sources, "Subject", "last_name") or source_value(sources, "User", "last_name"),
            "DateOfBirth": iso_date(
                source_value(sources, "Subject", "date_of_birth") or source_value(sources, "User", "date_of_birth")
            ),
            "Gender": source_value(sources, "Subject", "gender") or source_value(sources, "User", "gender"),
            "EmployeeType": source_value(sources, "Subject", "employee_type"),
            "OccupationGroup": source_value(sources, "Subject", "occupation_group"),
            "NationalityCode": source_value(sources, "Subject", "nationality_code")
            or source_value(sources, "User", "nationality_iso_code"),
            "Organization": source_value(sources, "Assignment", "organization_mission"),
            "FunctionalTitleCode": source_value(sources, "Subject", "functional_title_code"),
            "FunctionalTitleDescription": source_value(sources, "Subject", "functional_title_description"),
            "EmailAddress": source_value(sources, "Subject", "email_address")
            or source_value(sources, "User", "personal_email"),
            "DutyStationCode": source_value(sources, "Assignment", "duty_station_code"),
            "DutyStationDescription": source_value(sources, "Assignment", "duty_station_description"),
            "ReferenceNumber": encode_reference(assignment_id, context.program_id) if assignment_id != "" else "",
            "SequenceNumber": source_value(sources, "Program", "sequence_number"),
            "ClearanceType": source_value(sources, "Program", "clearance_type"),
            "RequestStatus": source_value(sources, "Program", "request_status"),
            "RequestDate": iso_date(source_value(sources, "Program", "request_date")),
            "StartDate": iso_date(source_value(sources, "Program", "start_date")),
            "EndDate": iso_date(source_value(sources, "Program", "end_date")),
        }

    # === Resolution ===

    def decode_identity(self, bag: KeyBag) -> tuple[int | None, int | None]:
        subject_id: int | None = None
        assignment_id, program_id = decode_reference(bag.get_str("ReferenceNumber"))
        if program_id is not None:
            program = self._store.find_program(program_id, assignment_id=assignment_id)
            if program is not None:
                subject_id = int(program["subject_id"])
            else:
                logger.warning(
                    "ReferenceNumber does not match a program",
                    assignment_id=assignment_id,
                    program_id=program_id,
                )

        if subject_id is None:
            index_number = bag.get_str("IndexNumber")
            if index_number is not None:
                matches = self._store.find_subject_ids_by_index_number(index_number)
                if len(matches) == 1:
                    subject_id = matches[0]
                elif len(matches) > 1:
                    logger.warning("IndexNumber matches several subjects", index_number=index_number, count=len(matches))
        return subject_id, program_id

    # === Interpretation ===

    def extract_request_id(self, parsed: Any) -> str | None:
        if not isinstance(parsed, dict) or parsed.get("IsSuccess") is not True:
            raise InvalidProviderResponseError(
                self.code,
                Operation.CREATE_CLEARANCE_REQUEST.value,
                f"IsSuccess={parsed.get('IsSuccess') if isinstance(parsed, dict) else None}",
            )
        entries = _result_entries(parsed)
        if not entries:
            return None
        return as_text(entries[0].get("Id"))

    def create_remark(self, parsed: Any, request_id: str) -> str:
        entries = _result_entries(parsed)
        index_number = as_text(entries[0].get("IndexNumber")) if entries else None
        return f"Id={request_id};IndexNumber={index_number or ''}"

    def status_results(self, parsed: Any) -> list[StatusResultItem] | None:
        entries = _result_entries(parsed)
        if isinstance(parsed, dict) and parsed.get("IsSuccess") is False:
            logger.warning("Status response reported IsSuccess=false", provider=self.code)
            return []
        if len(entries) <= 1:
            return None

        items: list[StatusResultItem] = []
        for entry in entries:
            index_number = as_text(entry.get("IndexNumber"))
            reference = as_text(entry.get("ReferenceNumber"))
            if index_number is None:
                logger.warning("Batch result without IndexNumber; skipped", provider=self.code, reference_number=reference)
                continue
            subject_ids = tuple(self._store.find_subject_ids_by_index_number(index_number))
            if not subject_ids and index_number.isdigit():
                subject_ids = (int(index_number),)
            assignment_id, program_id = decode_reference(reference)
            if reference is not None and program_id is None:
                logger.warning("Unparseable ReferenceNumber", provider=self.code, reference_number=reference)
            items.append(
                StatusResultItem(
                    response_id=as_text(entry.get("Id")),
                    subject_ids=subject_ids,
                    program_id=program_id,
                    assignment_id=assignment_id,
                    status_label=as_text(entry.get("ClearanceStatus")),
                    status_date=parse_date(as_text(entry.get("ClearanceDate"))),
                    reference={"index_number": index_number, "reference_number": reference or ""},
                )
            )
        return items

    def single_status_fields(self, parsed: Any) -> ResponseFields:
        entries = _result_entries(parsed)
        if not entries:
            return super().single_status_fields(parsed)
        entry = entries[0]
        return ResponseFields(
            response_id=as_text(entry.get("Id")),
            status_label=as_text(entry.get("ClearanceStatus")),
            status_date=parse_date(as_text(entry.get("ClearanceDate"))),
        )
