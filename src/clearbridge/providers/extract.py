# src/clearbridge/providers/extract.py
"""Tolerant field extraction from provider response bodies.

Providers disagree on where they put their identifiers, so every lookup is a
list of dotted paths tried in order; the first non-blank value wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from clearbridge.core.keybag import parse_json

logger = structlog.get_logger(__name__)

REQUEST_ID_PATHS: tuple[str, ...] = (
    "clearanceRequestId",
    "requestId",
    "data.requestId",
    "payload.requestId",
)

RESPONSE_ID_PATHS: tuple[str, ...] = (
    "clearanceResponseId",
    "responseId",
    "data.responseId",
    "payload.responseId",
    "resultId",
    "id",
    "caseId",
    "rvCaseId",
    "RVCaseId",
    "data.caseId",
    "payload.caseId",
)

STATUS_PATHS: tuple[str, ...] = ("status", "data.status", "payload.status")
STATUS_LABEL_PATHS: tuple[str, ...] = ("statusText", "state", "decision")
STATUS_DATE_PATHS: tuple[str, ...] = (
    "statusDate",
    "decisionDate",
    "completedOn",
    "data.statusDate",
    "payload.statusDate",
)
OUTCOME_PATHS: tuple[str, ...] = ("outcome", "decision", "result")

# Paths listed when an id is missing, to show what the provider did send.
_DIAGNOSTIC_PATH_LIMIT = 20


@dataclass(frozen=True)
class ResponseFields:
    """Correlation and status fields found in one response body."""

    request_id: str | None = None
    response_id: str | None = None
    status_code: int | None = None
    status_label: str | None = None
    status_date: datetime | None = None
    outcome: str | None = None


def select_path(node: Any, path: str) -> Any:
    """Value at a dotted path (numeric segments index lists), or None."""
    current = node
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def as_text(value: Any) -> str | None:
    """Scalar as stripped text; containers, None and blanks become None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    return text or None


def first_text(node: Any, paths: Iterable[str]) -> str | None:
    for path in paths:
        text = as_text(select_path(node, path))
        if text is not None:
            return text
    return None


def find_any_depth(node: Any, *keys: str) -> str | None:
    """First non-blank scalar under any of ``keys`` anywhere in the tree.

    Keys are tried in order; within a key the walk is depth-first.
    """
    for key in keys:
        found = _find_key(node, key)
        if found is not None:
            return found
    return None


def _find_key(node: Any, key: str) -> str | None:
    if isinstance(node, dict):
        if key in node:
            text = as_text(node[key])
            if text is not None:
                return text
        for child in node.values():
            found = _find_key(child, key)
            if found is not None:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find_key(item, key)
            if found is not None:
                return found
    return None


def parse_date(text: str | None) -> datetime | None:
    """ISO-8601 timestamp as an aware UTC datetime; None when unparseable."""
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def token_paths(node: Any, prefix: str = "", limit: int = _DIAGNOSTIC_PATH_LIMIT) -> list[str]:
    """Dotted paths present in a JSON tree (first three array items), capped at ``limit``."""
    paths: list[str] = []

    def walk(value: Any, current: str) -> None:
        if len(paths) >= limit:
            return
        if isinstance(value, dict):
            for name, child in value.items():
                path = f"{current}.{name}" if current else str(name)
                paths.append(path)
                walk(child, path)
        elif isinstance(value, list):
            for index, item in enumerate(value[:3]):
                walk(item, f"{current}[{index}]")

    walk(node, prefix)
    return paths[:limit]


class ResponseFieldExtractor:
    """Multi-path extraction of request id, response id and status fields.

    Provider-specific paths (from settings or a provider profile) are tried
    before the shared defaults.
    """

    def __init__(
        self,
        *,
        request_id_paths: Sequence[str] = (),
        response_id_paths: Sequence[str] = (),
    ) -> None:
        self._request_id_paths = (*request_id_paths, *REQUEST_ID_PATHS)
        self._response_id_paths = (*response_id_paths, *RESPONSE_ID_PATHS)

    def extract(self, body: str | None, provider_code: str) -> ResponseFields:
        """Fields from a response body. Blank or non-JSON bodies yield empty fields."""
        parsed = parse_json(body)
        if parsed is None:
            if body is not None and body.strip():
                logger.warning("Response body is not JSON", provider=provider_code, body=body[:500])
            return ResponseFields()
        return self.extract_from(parsed, provider_code)

    def extract_from(self, parsed: Any, provider_code: str) -> ResponseFields:
        status_value = next(
            (value for value in (select_path(parsed, p) for p in STATUS_PATHS) if value is not None),
            None,
        )
        status_code = status_value if isinstance(status_value, int) and not isinstance(status_value, bool) else None
        status_label = as_text(status_value) if isinstance(status_value, str) else None

        fields = ResponseFields(
            request_id=first_text(parsed, self._request_id_paths),
            response_id=first_text(parsed, self._response_id_paths),
            status_code=status_code,
            status_label=status_label or first_text(parsed, STATUS_LABEL_PATHS),
            status_date=parse_date(first_text(parsed, STATUS_DATE_PATHS)),
            outcome=first_text(parsed, OUTCOME_PATHS),
        )
        logger.debug(
            "Extracted response fields",
            provider=provider_code,
            request_id=fields.request_id,
            response_id=fields.response_id,
            status_code=fields.status_code,
            status_label=fields.status_label,
        )
        return fields

    def log_missing(self, parsed: Any, provider_code: str, field: str) -> None:
        """Warn that ``field`` was not found, listing the paths that were present."""
        logger.warning(
            "Response field not found",
            provider=provider_code,
            field=field,
            available_paths=token_paths(parsed),
        )
