# src/clearbridge/engine/resolver.py
"""Context resolver: whose case is this invocation about?

Invocations carry no subject or program column. On the first execution the
caller says who it is for (BootstrapRequest); on every later execution the
answer is reconstructed from the first request body logged for the
invocation:

1. Collect identifier-like fields of that body into a key bag, using the
   endpoint template's key map to translate external names to internal ones
2. Read ProgramId / SubjectId (or Program.Id / Subject.Id)
3. Let the provider profile decode its own encodings (e.g. ReferenceNumber)
4. Fill a missing side from the clearance link table, then from the
   program row
5. Give up with UnresolvableContextError; retrying cannot fix missing data
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from clearbridge.contracts import BootstrapRequest, Invocation, Operation, ResolvedContext, UnresolvableContextError
from clearbridge.core.keybag import DEFAULT_RULES, KeyBag, build_key_bag
from clearbridge.core.keymap import KeyMappingProvider, apply_key_map

if TYPE_CHECKING:
    from clearbridge.providers.registry import ProviderRegistry
    from clearbridge.store.catalog import EndpointCatalog
    from clearbridge.store.clearances import ClearanceStore
    from clearbridge.store.invocations import InvocationStore

logger = structlog.get_logger(__name__)

PROGRAM_KEYS: tuple[str, ...] = ("ProgramId", "Program.Id")
SUBJECT_KEYS: tuple[str, ...] = ("SubjectId", "Subject.Id")


def _positive(value: int | None) -> int | None:
    return value if value is not None and value > 0 else None


def _first_int(bag: KeyBag, keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = _positive(bag.get_int(key))
        if value is not None:
            return value
    return None


class ContextResolver:
    """Resolves the (subject_id, program_id) pair an invocation acts on."""

    def __init__(
        self,
        invocations: InvocationStore,
        clearances: ClearanceStore,
        catalog: EndpointCatalog,
        registry: ProviderRegistry,
        key_maps: KeyMappingProvider | None = None,
    ) -> None:
        self._invocations = invocations
        self._clearances = clearances
        self._catalog = catalog
        self._registry = registry
        self._key_maps = key_maps or KeyMappingProvider()

    def resolve(self, invocation: Invocation, bootstrap: BootstrapRequest | None = None) -> ResolvedContext:
        """Bootstrap when given, otherwise reconstruct from the invocation log.

        Raises:
            UnresolvableContextError: If either id cannot be determined
        """
        if bootstrap is not None:
            return self.resolve_bootstrap(bootstrap, invocation_id=invocation.invocation_id)
        return self.reconstruct(invocation)

    def try_resolve(self, invocation: Invocation) -> ResolvedContext | None:
        """reconstruct() that returns None instead of raising."""
        try:
            return self.reconstruct(invocation)
        except UnresolvableContextError as e:
            logger.debug("Invocation context not resolvable", invocation_id=invocation.invocation_id, reason=e.reason)
            return None

    def resolve_bootstrap(self, bootstrap: BootstrapRequest, *, invocation_id: int | None = None) -> ResolvedContext:
        subject_id = _positive(bootstrap.subject_id)
        program_id = _positive(bootstrap.program_id)
        if subject_id is None and program_id is None:
            raise UnresolvableContextError("bootstrap carries neither subject nor program", invocation_id=invocation_id)

        subject_id, program_id = self._fill_from_links(subject_id, program_id)
        subject_id = subject_id or self._subject_of_program(program_id)
        if subject_id is None or program_id is None:
            raise UnresolvableContextError(
                f"bootstrap subject={bootstrap.subject_id} program={bootstrap.program_id} has no matching clearance link",
                invocation_id=invocation_id,
            )
        return ResolvedContext(subject_id=subject_id, program_id=program_id)

    def reconstruct(self, invocation: Invocation) -> ResolvedContext:
        invocation_id = invocation.invocation_id
        body = self._invocations.first_request_payload(invocation_id)
        if body is None:
            raise UnresolvableContextError("no logged request body to reconstruct from", invocation_id=invocation_id)

        subject_id, program_id = self.decode_body(body, invocation.provider_code, invocation.operation.value)

        if subject_id is None or program_id is None:
            subject_id, program_id = self._fill_from_links(subject_id, program_id)
            subject_id = subject_id or self._subject_of_program(program_id)

        if subject_id is None or program_id is None:
            raise UnresolvableContextError(
                f"resolved subject={subject_id} program={program_id} from logged request body",
                invocation_id=invocation_id,
            )
        logger.debug(
            "Invocation context reconstructed",
            invocation_id=invocation_id,
            subject_id=subject_id,
            program_id=program_id,
        )
        return ResolvedContext(subject_id=subject_id, program_id=program_id)

    def decode_body(self, body: str, provider_code: str, operation: str) -> tuple[int | None, int | None]:
        """(subject_id, program_id) read from a request body, without table fallbacks."""
        key_map = self._key_map(provider_code, operation)
        # External names from the key map are collected even when they do not end in "Id".
        external_names = {name.rsplit(".", 1)[-1] for name in key_map}
        rules = DEFAULT_RULES.with_names(external_names) if external_names else DEFAULT_RULES

        bag = build_key_bag(body, provider_code=provider_code, operation=operation, rules=rules)
        applied = apply_key_map(bag, key_map)
        program_id = _first_int(bag, PROGRAM_KEYS)
        subject_id = _first_int(bag, SUBJECT_KEYS)

        if subject_id is None or program_id is None:
            profile = self._registry.find(provider_code)
            if profile is not None:
                decoded_subject, decoded_program = profile.decode_identity(bag)
                subject_id = subject_id or _positive(decoded_subject)
                program_id = program_id or _positive(decoded_program)

        logger.debug(
            "Request body decoded",
            provider=provider_code,
            keys=len(bag),
            key_map_applied=applied,
            subject_id=subject_id,
            program_id=program_id,
        )
        return subject_id, program_id

    def _key_map(self, provider_code: str, operation: str) -> dict[str, str]:
        endpoint = self._catalog.get_active(provider_code, Operation(operation))
        if endpoint is None:
            return {}
        return self._key_maps.key_map_for(endpoint.payload_template)

    def _fill_from_links(self, subject_id: int | None, program_id: int | None) -> tuple[int | None, int | None]:
        """Complete a one-sided pair from the most recent clearance link."""
        if subject_id is not None and program_id is not None:
            return subject_id, program_id
        if program_id is not None:
            link = self._clearances.latest_link(program_id=program_id)
            if link is not None:
                return link.subject_id, program_id
        elif subject_id is not None:
            link = self._clearances.latest_link(subject_id=subject_id)
            if link is not None:
                return subject_id, link.program_id
        return subject_id, program_id

    def _subject_of_program(self, program_id: int | None) -> int | None:
        if program_id is None:
            return None
        program = self._clearances.get_program(program_id)
        if program is None:
            return None
        return _positive(program["subject_id"])
