# tests/unit/providers/test_provider_registry.py
"""Tests for the provider registry and per-profile composition helpers."""

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

import pytest

from clearbridge.contracts import ProtocolShape, ResolvedContext
from clearbridge.core.config import ProviderSettings
from clearbridge.core.keybag import KeyBag
from clearbridge.providers import (
    CmtsProfile,
    EarthMedProfile,
    ProviderProfile,
    build_registry,
    decode_reference,
    encode_reference,
)
from clearbridge.providers.base import iso_date, source_value
from clearbridge.store import ClearanceStore

# =============================================================================
# Registry
# =============================================================================


class TestBuildRegistry:
    def test_builtins_and_configured_providers(self, clearances: ClearanceStore) -> None:
        """Built-ins are always present; settings add generic providers."""
        registry = build_registry(clearances, {"ACME": ProviderSettings(protocol=ProtocolShape.THREE_CYCLE)})

        assert sorted(registry) == ["ACME", "CMTS", "EARTHMED"]
        assert isinstance(registry["cmts"], CmtsProfile)
        assert isinstance(registry["EarthMed"], EarthMedProfile)
        assert type(registry["acme"]) is ProviderProfile
        assert registry["ACME"].protocol == ProtocolShape.THREE_CYCLE
        assert "acme" in registry
        assert registry.find("nope") is None

    def test_builtin_protocol_cannot_be_overridden(self, clearances: ClearanceStore) -> None:
        """A configured protocol for CMTS is ignored."""
        registry = build_registry(clearances, {"CMTS": ProviderSettings(protocol=ProtocolShape.TWO_CYCLE)})
        assert registry["CMTS"].protocol == ProtocolShape.THREE_CYCLE

    def test_builtin_gets_configured_id_paths(self, clearances: ClearanceStore) -> None:
        """Extra id paths from settings apply to built-in providers too."""
        registry = build_registry(clearances, {"CMTS": ProviderSettings(request_id_paths=["data.ticket"])})
        assert registry["CMTS"].extract_request_id({"requestId": "R", "data": {"ticket": "T"}}) == "T"

    def test_completion_status_follows_protocol(self, clearances: ClearanceStore) -> None:
        """Three-cycle providers stop at CLEARED; two-cycle ones deliver."""
        registry = build_registry(clearances)
        assert registry["CMTS"].completion_status == "CLEARED"
        assert registry["EARTHMED"].completion_status == "DELIVERED"


# =============================================================================
# Composition helpers
# =============================================================================


class TestSourceHelpers:
    def test_source_value_first_non_blank(self) -> None:
        """Missing models and blank columns degrade to the next name or ""."""
        sources = {"Subject": {"first_name": " ", "preferred_name": "Ada"}, "User": None}
        assert source_value(sources, "Subject", "first_name", "preferred_name") == "Ada"
        assert source_value(sources, "User", "first_name") == ""
        assert source_value(sources, "Program", "id") == ""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (datetime(1990, 5, 17, 8, 30), "1990-05-17"),
            (date(1990, 5, 17), "1990-05-17"),
            ("1990-05-17T08:30:00", "1990-05-17"),
            ("17/05/1990", "17/05/1990"),
            (None, ""),
        ],
    )
    def test_iso_date(self, value: Any, expected: str) -> None:
        """Dates render as YYYY-MM-DD; unparseable text passes through."""
        assert iso_date(value) == expected


class TestCmtsEnrichment:
    def test_falls_back_to_user_columns(self, clearances: ClearanceStore) -> None:
        """Subject columns win; blank ones fall back to the user."""
        profile = CmtsProfile(clearances)
        sources = {
            "Subject": {"index_number": "100234", "first_name": "Ada", "last_name": None, "date_of_birth": None},
            "User": {"last_name": "Okafor", "date_of_birth": datetime(1990, 5, 17), "nationality_iso_code": "NGA"},
            "Program": {"request_date": datetime(2026, 3, 1, 9, 0)},
        }

        fields = profile.enrich(sources, ResolvedContext(subject_id=7, program_id=3))

        assert fields["subjectId"] == 7
        assert fields["programId"] == 3
        assert fields["firstName"] == "Ada"
        assert fields["lastName"] == "Okafor"
        assert fields["dateOfBirth"] == "1990-05-17"
        assert fields["nationality"] == "NGA"
        assert fields["requestedDate"] == "2026-03-01"
        assert profile.missing_mandatory(fields) == []


class TestEarthMedIdentity:
    def test_reference_round_trip(self) -> None:
        """encode_reference and decode_reference agree; malformed input decodes to nothing."""
        assert decode_reference(encode_reference(12, 345)) == (12, 345)
        assert decode_reference("12-345") == (None, None)
        assert decode_reference("a_1") == (None, None)
        assert decode_reference(None) == (None, None)

    def test_enrich_builds_reference_number(self, clearances: ClearanceStore) -> None:
        """ReferenceNumber is '<assignmentId>_<programId>'; blanks are reported."""
        profile = EarthMedProfile(clearances)
        fields = profile.enrich(
            {"Program": {"assignment_id": 4, "sequence_number": "1"}, "Subject": {"index_number": "100234"}},
            ResolvedContext(subject_id=7, program_id=3),
        )

        assert fields["ReferenceNumber"] == "4_3"
        assert fields["IndexNumber"] == "100234"
        assert profile.missing_mandatory(fields) == ["FirstName", "LastName"]

    def test_decode_identity_from_reference(self, clearances: ClearanceStore, make_case: Callable[..., Any]) -> None:
        """A valid ReferenceNumber yields the program and its subject."""
        case = make_case()
        bag = KeyBag()
        bag.put("ReferenceNumber", encode_reference(case.assignment_id, case.program_id))

        assert EarthMedProfile(clearances).decode_identity(bag) == (case.subject_id, case.program_id)

    def test_decode_identity_falls_back_to_index_number(
        self, clearances: ClearanceStore, make_case: Callable[..., Any]
    ) -> None:
        """A unique IndexNumber supplies the subject when the reference does not."""
        case = make_case("424242")
        bag = KeyBag()
        bag.put("ReferenceNumber", "garbage")
        bag.put("IndexNumber", "424242")

        assert EarthMedProfile(clearances).decode_identity(bag) == (case.subject_id, None)

    def test_duplicate_index_number_resolves_nothing(
        self, clearances: ClearanceStore, make_case: Callable[..., Any]
    ) -> None:
        """An index number shared by two subjects is not trusted."""
        make_case("777")
        make_case("777")
        bag = KeyBag()
        bag.put("IndexNumber", "777")

        assert EarthMedProfile(clearances).decode_identity(bag) == (None, None)
