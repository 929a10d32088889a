# tests/unit/engine/test_status_poller.py
"""Tests for the status and acknowledge polling sweeps."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import respx

from clearbridge.contracts import ClearanceStatus, IntegrationStatus, Operation
from clearbridge.engine.services import Services

X_BASE_URL = "https://x.example.test/api"


def _requested(services: Services, case: Any, provider_code: str = "X", request_id: str = "R-99") -> None:
    """Seed the state left behind by a successful create cycle."""
    services.clearances.create_link(
        subject_id=case.subject_id,
        program_id=case.program_id,
        provider_code=provider_code,
        provider_request_id=request_id,
        assignment_id=case.assignment_id,
    )
    services.clearances.record_requested(
        subject_id=case.subject_id,
        program_id=case.program_id,
        provider_code=provider_code,
        remark=f"clearanceRequestId={request_id}",
    )


def _cleared(services: Services, case: Any) -> None:
    """Seed the state left behind by a completed status cycle."""
    link = services.clearances.create_link(
        subject_id=case.subject_id,
        program_id=case.program_id,
        provider_code="X",
        provider_request_id="R-99",
        assignment_id=case.assignment_id,
    )
    services.clearances.complete_link(link.link_id, provider_response_id="A-1", completion_date=datetime.now(UTC))
    clearance = services.clearances.record_requested(
        subject_id=case.subject_id, program_id=case.program_id, provider_code="X", remark="clearanceRequestId=R-99"
    )
    services.clearances.advance(clearance.clearance_id, ClearanceStatus.CLEARED)


# =============================================================================
# Status sweep
# =============================================================================


class TestOpenClearances:
    @respx.mock
    def test_reuses_invocation_until_final(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_status_endpoint: Callable[..., Any],
    ) -> None:
        """The first sweep creates the status invocation; the next one re-runs it."""
        case = make_case()
        _requested(services, case)
        add_status_endpoint()
        route = respx.get(f"{X_BASE_URL}/requests/R-99").mock(
            side_effect=[
                httpx.Response(200, json={"status": "Pending"}),
                httpx.Response(200, json={"clearanceResponseId": "A-1", "status": "Cleared"}),
            ]
        )

        assert services.manager.process_open_clearances() is True
        invocations = services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS)
        assert len(invocations) == 1
        assert services.clearances.get_clearance(case.subject_id, "X").status_code == ClearanceStatus.CLEARANCE_REQUESTED

        assert services.manager.process_open_clearances() is True
        invocation = services.invocations.get(invocations[0].invocation_id)
        assert invocation.attempt_count == 2
        assert invocation.status == IntegrationStatus.SUCCESS
        assert route.call_count == 2
        assert len(services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS)) == 1

        clearance = services.clearances.get_clearance(case.subject_id, "X")
        assert clearance.status_code == ClearanceStatus.CLEARED
        assert "clearanceResponseId=A-1" in clearance.link_remarks
        link = services.clearances.latest_link(subject_id=case.subject_id, program_id=case.program_id, provider_code="X")
        assert link.is_completed
        assert link.provider_response_id == "A-1"

        # Cleared clearances drop out of the status sweep
        assert services.manager.process_open_clearances() is True
        assert route.call_count == 2

    @respx.mock
    def test_budget_exhausted_stops_polling(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_status_endpoint: Callable[..., Any],
    ) -> None:
        """Once attempt_count reaches retrigger_count the invocation is left alone."""
        case = make_case()
        _requested(services, case)
        add_status_endpoint(retrigger_count=2)
        route = respx.get(f"{X_BASE_URL}/requests/R-99").mock(return_value=httpx.Response(200, json={"status": "Pending"}))

        for _ in range(4):
            assert services.manager.process_open_clearances() is True

        assert route.call_count == 2
        invocations = services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS)
        assert len(invocations) == 1
        assert invocations[0].attempt_count == 2

    def test_permanently_failed_invocation_left_alone(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_status_endpoint: Callable[..., Any],
    ) -> None:
        """A status invocation that failed permanently is not re-run by the poller."""
        case = make_case()
        _requested(services, case)
        add_status_endpoint(retrigger=False)

        with respx.mock:
            respx.get(f"{X_BASE_URL}/requests/R-99").mock(return_value=httpx.Response(500))
            invocation_id = services.manager.create_invocation(
                case.subject_id, case.program_id, "X", Operation.GET_CLEARANCE_STATUS
            )
        assert services.invocations.get(invocation_id).status == IntegrationStatus.PERMANENTLY_FAILED

        # Retriggering switched back on does not revive the failed flow
        add_status_endpoint()
        with respx.mock:
            route = respx.get(f"{X_BASE_URL}/requests/R-99").mock(return_value=httpx.Response(200))
            assert services.manager.process_open_clearances() is True
            assert not route.called
        assert len(services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS)) == 1

    def test_no_status_endpoint_creates_nothing(self, services: Services, make_case: Callable[..., Any]) -> None:
        """Without an active status endpoint repeated sweeps add no invocations."""
        case = make_case()
        _requested(services, case)

        for _ in range(5):
            assert services.manager.process_open_clearances() is True

        assert services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS) == []

    def test_inactive_status_endpoint_creates_nothing(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_status_endpoint: Callable[..., Any],
    ) -> None:
        """A deactivated status endpoint pauses polling instead of failing invocations."""
        case = make_case()
        _requested(services, case)
        add_status_endpoint(is_active=False)

        for _ in range(3):
            assert services.manager.process_open_clearances() is True

        assert services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS) == []

    def test_non_retriggering_endpoint_not_polled(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_status_endpoint: Callable[..., Any],
    ) -> None:
        """An endpoint without a retrigger policy is never polled by the sweep."""
        case = make_case()
        _requested(services, case)
        add_status_endpoint(retrigger=False)

        with respx.mock:
            route = respx.get(f"{X_BASE_URL}/requests/R-99").mock(return_value=httpx.Response(200))
            assert services.manager.process_open_clearances() is True
            assert not route.called

        assert services.invocations.find_by_provider_operation("X", Operation.GET_CLEARANCE_STATUS) == []

    def test_unregistered_provider_skipped(self, services: Services, make_case: Callable[..., Any]) -> None:
        """Clearances of unknown providers are skipped without failing the sweep."""
        case = make_case()
        _requested(services, case, provider_code="ZZ")

        assert services.manager.process_open_clearances() is True
        assert services.invocations.find_by_provider_operation("ZZ", Operation.GET_CLEARANCE_STATUS) == []


# =============================================================================
# Acknowledge sweep
# =============================================================================


class TestAcknowledge:
    @respx.mock
    def test_cleared_clearance_acknowledged(
        self,
        services: Services,
        make_case: Callable[..., Any],
        add_endpoint: Callable[..., Any],
    ) -> None:
        """A CLEARED three-cycle clearance is acknowledged with its response id."""
        case = make_case()
        _cleared(services, case)
        add_endpoint(
            operation=Operation.ACKNOWLEDGE_RESPONSE,
            path_template="/requests/{id}/acknowledge",
            data_models="ClearanceLink",
        )
        route = respx.post(f"{X_BASE_URL}/requests/A-1/acknowledge").mock(return_value=httpx.Response(204))

        assert services.manager.process_acknowledge() is True

        assert route.call_count == 1
        clearance = services.clearances.get_clearance(case.subject_id, "X")
        assert clearance.status_code == ClearanceStatus.DELIVERED
        assert "Acknowledgement posted" in clearance.additional_remarks

        # Delivered clearances are not acknowledged twice
        assert services.manager.process_acknowledge() is True
        assert route.call_count == 1

    def test_two_cycle_provider_not_acknowledged(self, services: Services, make_case: Callable[..., Any]) -> None:
        """Providers without an acknowledge cycle are skipped."""
        case = make_case()
        link = services.clearances.create_link(
            subject_id=case.subject_id, program_id=case.program_id, provider_code="EARTHMED", provider_request_id="812"
        )
        services.clearances.complete_link(link.link_id, provider_response_id="A-9", completion_date=datetime.now(UTC))
        clearance = services.clearances.record_requested(
            subject_id=case.subject_id, program_id=case.program_id, provider_code="EARTHMED", remark="Id=812"
        )
        services.clearances.advance(clearance.clearance_id, ClearanceStatus.CLEARED)

        assert services.manager.process_acknowledge() is True
        assert services.invocations.find_by_provider_operation("EARTHMED", Operation.ACKNOWLEDGE_RESPONSE) == []

    def test_no_acknowledge_endpoint_creates_nothing(self, services: Services, make_case: Callable[..., Any]) -> None:
        """Without an active acknowledge endpoint the clearance stays CLEARED and no rows pile up."""
        case = make_case()
        _cleared(services, case)

        for _ in range(3):
            assert services.manager.process_acknowledge() is True

        assert services.invocations.find_by_provider_operation("X", Operation.ACKNOWLEDGE_RESPONSE) == []
        assert services.clearances.get_clearance(case.subject_id, "X").status_code == ClearanceStatus.CLEARED
