# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures:
- db: in-memory ClearanceDB (fresh per test)
- invocations / clearances / catalog: store objects over ``db``
- make_case: inserts user -> subject -> assignment -> program rows
- add_endpoint: seeds an endpoint catalog record
- services: full engine object graph over ``db`` with provider "X" configured

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from clearbridge.contracts import Operation, ProtocolShape
from clearbridge.core.config import ClearbridgeSettings, EndpointSeed, ProviderSettings
from clearbridge.engine.services import Services, build_services
from clearbridge.store import ClearanceDB, ClearanceStore, EndpointCatalog, InvocationStore

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


X_BASE_URL = "https://x.example.test/api"

# Payload that carries both internal ids, so every later attempt can be
# reconstructed from the logged body.
IDS_TEMPLATE = '{"subjectId": {{ SubjectId }}, "programId": {{ ProgramId }}}'

STATUS_TEMPLATE = (
    '{"clearanceRequestId": "{{ ClearanceLink.provider_request_id }}", "subjectId": {{ SubjectId }}, "programId": {{ ProgramId }}}'
)


@dataclass(frozen=True)
class Case:
    """Ids of one seeded subject/program pair."""

    user_id: int
    subject_id: int
    assignment_id: int
    program_id: int
    index_number: str


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def db() -> Iterator[ClearanceDB]:
    database = ClearanceDB.in_memory()
    yield database
    database.close()


@pytest.fixture
def invocations(db: ClearanceDB) -> InvocationStore:
    return InvocationStore(db)


@pytest.fixture
def clearances(db: ClearanceDB) -> ClearanceStore:
    return ClearanceStore(db)


@pytest.fixture
def catalog(db: ClearanceDB) -> EndpointCatalog:
    return EndpointCatalog(db)


@pytest.fixture
def make_case(clearances: ClearanceStore) -> Callable[..., Case]:
    """Factory inserting a user, subject, assignment and program."""

    def _make(
        index_number: str = "100234",
        *,
        first_name: str = "Ada",
        last_name: str = "Okafor",
        assignment_id: int | None = None,
        **subject_values: Any,
    ) -> Case:
        user_id = clearances.add_user(first_name=first_name, last_name=last_name, nationality_iso_code="NGA")
        subject_id = clearances.add_subject(
            user_id=user_id,
            index_number=index_number,
            first_name=first_name,
            last_name=last_name,
            **subject_values,
        )
        if assignment_id is None:
            assignment_id = clearances.add_assignment(
                name="Field mission",
                organization_mission="UNMISS",
                duty_station_code="JUB",
                duty_station_description="Juba",
            )
        program_id = clearances.add_program(
            assignment_id=assignment_id,
            subject_id=subject_id,
            sequence_number="1",
            clearance_type="MEDICAL",
            request_status="OPEN",
        )
        return Case(user_id, subject_id, assignment_id, program_id, index_number)

    return _make


@pytest.fixture
def add_endpoint(catalog: EndpointCatalog) -> Callable[..., Any]:
    """Factory seeding an endpoint; defaults describe provider X's create call."""

    def _add(**overrides: Any) -> Any:
        values: dict[str, Any] = {
            "provider_code": "X",
            "operation": Operation.CREATE_CLEARANCE_REQUEST,
            "base_url": X_BASE_URL,
            "path_template": "/requests",
            "http_method": "POST",
            "timeout_seconds": 30,
            "payload_template": IDS_TEMPLATE,
            "retrigger": True,
            "retrigger_count": 3,
            "retrigger_interval_minutes": 1,
        }
        values.update(overrides)
        return catalog.upsert(EndpointSeed(**values))

    return _add


# =============================================================================
# Engine fixtures
# =============================================================================


def make_settings(**providers: ProviderSettings) -> ClearbridgeSettings:
    configured = {"X": ProviderSettings(protocol=ProtocolShape.THREE_CYCLE)}
    configured.update(providers)
    return ClearbridgeSettings(providers=configured)


@pytest.fixture
def services(db: ClearanceDB) -> Iterator[Services]:
    built = build_services(make_settings(), db)
    yield built
    built.http_client.close()


@pytest.fixture
def services_factory(db: ClearanceDB) -> Iterator[Callable[..., Services]]:
    """Builds services over ``db`` with extra providers configured."""
    built: list[Services] = []

    def _build(**providers: ProviderSettings) -> Services:
        instance = build_services(make_settings(**providers), db)
        built.append(instance)
        return instance

    yield _build
    for instance in built:
        instance.http_client.close()


@pytest.fixture
def add_status_endpoint(add_endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Factory seeding X's status endpoint (GET with a body naming the link)."""

    def _add(**overrides: Any) -> Any:
        values: dict[str, Any] = {
            "operation": Operation.GET_CLEARANCE_STATUS,
            "path_template": "/requests/{id}",
            "http_method": "GET",
            "data_models": "ClearanceLink",
            "payload_template": STATUS_TEMPLATE,
            "retrigger_count": 2,
        }
        values.update(overrides)
        return add_endpoint(**values)

    return _add
