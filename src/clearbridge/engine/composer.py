# src/clearbridge/engine/composer.py
"""Request composer: the named data bundle a payload template renders against.

Bundle layout (model name -> mapping):

    {
        "Subject": {...}, "Program": {...}, ...      # models the endpoint declares
        "ProviderRequest": {...},                    # provider-specific synthetic model
        "ProgramId": 3, "SubjectId": 7,              # always present
    }

Raw models carry their column names plus PascalCase and lower-case aliases
(``index_number``, ``IndexNumber``, ``indexnumber``), so templates written
against either naming convention render.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from clearbridge.contracts import Endpoint, ResolvedContext

if TYPE_CHECKING:
    from clearbridge.providers.registry import ProviderRegistry
    from clearbridge.store.clearances import ClearanceStore

logger = structlog.get_logger(__name__)

PROVIDER_REQUEST_MODEL = "ProviderRequest"

# Canonical spelling of each model name; endpoints may declare any casing.
_CANONICAL_MODELS = {
    "subject": "Subject",
    "program": "Program",
    "assignment": "Assignment",
    "user": "User",
    "clearancelink": "ClearanceLink",
    "clearance": "Clearance",
}

# Loaded for enrichment whether or not the endpoint declares them.
_ENRICHMENT_SOURCES = ("Subject", "Program", "Assignment", "User")


def pascal_case(name: str) -> str:
    """``index_number`` -> ``IndexNumber``; names without underscores keep their casing."""
    if "_" not in name:
        return name[:1].upper() + name[1:]
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def with_aliases(row: Mapping[str, Any]) -> dict[str, Any]:
    """Column names plus PascalCase and lower-case aliases (originals win)."""
    aliased: dict[str, Any] = dict(row)
    for name, value in row.items():
        for alias in (pascal_case(name), name.replace("_", "").lower()):
            aliased.setdefault(alias, value)
    return aliased


class RequestComposer:
    """Builds the data bundle for one (provider, operation, subject, program)."""

    def __init__(self, clearances: ClearanceStore, registry: ProviderRegistry) -> None:
        self._clearances = clearances
        self._registry = registry
        self._loaders: dict[str, Callable[[str, ResolvedContext], Mapping[str, Any] | None]] = {
            "subject": lambda provider, ctx: self._clearances.get_subject(ctx.subject_id),
            "program": lambda provider, ctx: self._clearances.get_program(ctx.program_id),
            "assignment": self._load_assignment,
            "user": self._load_user,
            "clearancelink": self._load_link,
            "clearance": self._load_clearance,
        }

    def _load_assignment(self, provider_code: str, ctx: ResolvedContext) -> Mapping[str, Any] | None:
        program = self._clearances.get_program(ctx.program_id)
        if program is None or program.get("assignment_id") is None:
            return None
        return self._clearances.get_assignment(int(program["assignment_id"]))

    def _load_user(self, provider_code: str, ctx: ResolvedContext) -> Mapping[str, Any] | None:
        subject = self._clearances.get_subject(ctx.subject_id)
        if subject is None or subject.get("user_id") is None:
            return None
        return self._clearances.get_user(int(subject["user_id"]))

    def _load_link(self, provider_code: str, ctx: ResolvedContext) -> Mapping[str, Any] | None:
        link = self._clearances.latest_link(subject_id=ctx.subject_id, program_id=ctx.program_id, provider_code=provider_code)
        return dataclasses.asdict(link) if link is not None else None

    def _load_clearance(self, provider_code: str, ctx: ResolvedContext) -> Mapping[str, Any] | None:
        clearance = self._clearances.get_clearance(ctx.subject_id, provider_code)
        return dataclasses.asdict(clearance) if clearance is not None else None

    def _load(self, model: str, provider_code: str, ctx: ResolvedContext) -> Mapping[str, Any] | None:
        loader = self._loaders.get(model.lower())
        if loader is None:
            logger.warning("Unknown data model requested by endpoint; skipped", model=model)
            return None
        row = loader(provider_code, ctx)
        if not row:
            logger.warning(
                "Data model empty; skipped",
                model=model,
                subject_id=ctx.subject_id,
                program_id=ctx.program_id,
            )
            return None
        return row

    def compose(self, endpoint: Endpoint, context: ResolvedContext) -> dict[str, Any]:
        """Bundle for rendering the endpoint's payload template."""
        provider_code = endpoint.provider_code
        bundle: dict[str, Any] = {}

        for model in endpoint.model_names:
            row = self._load(model, provider_code, context)
            if row is not None:
                bundle[_CANONICAL_MODELS[model.lower()]] = with_aliases(row)

        bundle[PROVIDER_REQUEST_MODEL] = self._enrich(provider_code, context)
        bundle.setdefault("ProgramId", context.program_id)
        bundle.setdefault("SubjectId", context.subject_id)

        logger.debug(
            "Data bundle composed",
            provider=provider_code,
            operation=endpoint.operation.value,
            models=sorted(bundle),
        )
        return bundle

    def _enrich(self, provider_code: str, context: ResolvedContext) -> dict[str, Any]:
        """Provider-specific synthetic model. Never raises."""
        profile = self._registry.find(provider_code)
        if profile is None:
            logger.warning("No provider profile; ProviderRequest left empty", provider=provider_code)
            return {}

        try:
            sources = {name: self._source(name, context) for name in _ENRICHMENT_SOURCES}
            provider_request = profile.enrich(sources, context)
        except Exception as e:
            logger.warning("Provider enrichment failed; ProviderRequest left empty", provider=provider_code, error=str(e))
            return {}

        missing = profile.missing_mandatory(provider_request)
        if missing:
            logger.warning(
                "Mandatory provider fields blank after enrichment",
                provider=provider_code,
                missing=missing,
                subject_id=context.subject_id,
                program_id=context.program_id,
            )
        return provider_request

    def _source(self, model: str, context: ResolvedContext) -> Mapping[str, Any] | None:
        loader = self._loaders[model.lower()]
        return loader("", context)
