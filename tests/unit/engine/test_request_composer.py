# tests/unit/engine/test_request_composer.py
"""Tests for the data bundle handed to payload templates."""

from collections.abc import Callable
from typing import Any

from clearbridge.contracts import ResolvedContext
from clearbridge.engine.composer import pascal_case, with_aliases
from clearbridge.engine.services import Services


class TestAliases:
    def test_pascal_case(self) -> None:
        """Snake case becomes PascalCase; other names only gain a capital."""
        assert pascal_case("index_number") == "IndexNumber"
        assert pascal_case("id") == "Id"
        assert pascal_case("firstName") == "FirstName"

    def test_originals_win_over_aliases(self) -> None:
        """An alias never shadows a real column of the same name."""
        aliased = with_aliases({"index_number": "1", "IndexNumber": "2"})
        assert aliased["IndexNumber"] == "2"
        assert aliased["indexnumber"] == "1"


class TestCompose:
    def test_declared_models_and_ids(
        self, services: Services, make_case: Callable[..., Any], add_endpoint: Callable[..., Any]
    ) -> None:
        """Declared models are loaded with aliases; ids are always present."""
        case = make_case("100234", first_name="Ada")
        endpoint = add_endpoint(data_models="subject, Program, Assignment")

        bundle = services.composer.compose(endpoint, ResolvedContext(case.subject_id, case.program_id))

        assert bundle["SubjectId"] == case.subject_id
        assert bundle["ProgramId"] == case.program_id
        assert bundle["Subject"]["IndexNumber"] == "100234"
        assert bundle["Subject"]["first_name"] == "Ada"
        assert bundle["Program"]["assignment_id"] == case.assignment_id
        assert bundle["Assignment"]["DutyStationCode"] == "JUB"
        assert bundle["ProviderRequest"] == {
            "programId": case.program_id,
            "subjectId": case.subject_id,
            "indexNo": "100234",
        }

    def test_unknown_and_empty_models_skipped(
        self, services: Services, make_case: Callable[..., Any], add_endpoint: Callable[..., Any]
    ) -> None:
        """Unknown model names and models with no row are left out."""
        case = make_case()
        endpoint = add_endpoint(data_models="Subject,Invoice,ClearanceLink")

        bundle = services.composer.compose(endpoint, ResolvedContext(case.subject_id, case.program_id))

        assert "Subject" in bundle
        assert "Invoice" not in bundle
        assert "ClearanceLink" not in bundle

    def test_clearance_link_model(
        self, services: Services, make_case: Callable[..., Any], add_endpoint: Callable[..., Any]
    ) -> None:
        """The latest link for the pair is exposed for status templates."""
        case = make_case()
        services.clearances.create_link(
            subject_id=case.subject_id, program_id=case.program_id, provider_code="X", provider_request_id="R-99"
        )
        endpoint = add_endpoint(data_models="ClearanceLink")

        bundle = services.composer.compose(endpoint, ResolvedContext(case.subject_id, case.program_id))

        assert bundle["ClearanceLink"]["provider_request_id"] == "R-99"
        assert bundle["ClearanceLink"]["ProviderRequestId"] == "R-99"

    def test_unregistered_provider_gets_empty_provider_request(
        self, services: Services, make_case: Callable[..., Any], add_endpoint: Callable[..., Any]
    ) -> None:
        """No profile means an empty ProviderRequest, not a failure."""
        case = make_case()
        endpoint = add_endpoint(provider_code="ZZ")

        bundle = services.composer.compose(endpoint, ResolvedContext(case.subject_id, case.program_id))

        assert bundle["ProviderRequest"] == {}
        assert bundle["SubjectId"] == case.subject_id

    def test_earthmed_provider_request(
        self, services: Services, make_case: Callable[..., Any], add_endpoint: Callable[..., Any]
    ) -> None:
        """EARTHMED enrichment reads subject, user, program and assignment rows."""
        case = make_case("100234", first_name="Ada", last_name="Okafor", gender="F")
        endpoint = add_endpoint(provider_code="EARTHMED")

        bundle = services.composer.compose(endpoint, ResolvedContext(case.subject_id, case.program_id))
        provider_request = bundle["ProviderRequest"]

        assert provider_request["ReferenceNumber"] == f"{case.assignment_id}_{case.program_id}"
        assert provider_request["FirstName"] == "Ada"
        assert provider_request["Gender"] == "F"
        assert provider_request["NationalityCode"] == "NGA"
        assert provider_request["DutyStationDescription"] == "Juba"
        assert provider_request["ClearanceType"] == "MEDICAL"
