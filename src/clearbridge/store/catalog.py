# src/clearbridge/store/catalog.py
"""Endpoint catalog: the data-driven definition of each provider operation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, select, update

from clearbridge.contracts import Endpoint, Operation
from clearbridge.store._database_ops import DatabaseOps
from clearbridge.store._helpers import now
from clearbridge.store.repositories import EndpointRepository
from clearbridge.store.schema import endpoints_table

if TYPE_CHECKING:
    from clearbridge.core.config import EndpointSeed
    from clearbridge.store.database import ClearanceDB

logger = structlog.get_logger(__name__)


class EndpointCatalog:
    """Looks up and seeds endpoint definitions keyed by (provider, operation)."""

    def __init__(self, db: ClearanceDB) -> None:
        self._ops = DatabaseOps(db)
        self._repo = EndpointRepository()

    def get_active(self, provider_code: str, operation: Operation) -> Endpoint | None:
        """Active endpoint for a provider/operation pair, newest definition first."""
        row = self._ops.execute_fetchone(
            select(endpoints_table)
            .where(
                and_(
                    endpoints_table.c.provider_code == provider_code.upper(),
                    endpoints_table.c.operation_code == operation.value,
                    endpoints_table.c.is_active.is_(True),
                )
            )
            .order_by(endpoints_table.c.endpoint_id.desc())
        )
        return self._repo.load(row) if row is not None else None

    def get_latest(self, provider_code: str, operation: Operation) -> Endpoint | None:
        """Newest definition for the pair whether or not it is active.

        A deactivated endpoint still carries the retry policy a failed
        attempt is classified against.
        """
        row = self._ops.execute_fetchone(
            select(endpoints_table)
            .where(
                and_(
                    endpoints_table.c.provider_code == provider_code.upper(),
                    endpoints_table.c.operation_code == operation.value,
                )
            )
            .order_by(endpoints_table.c.endpoint_id.desc())
        )
        return self._repo.load(row) if row is not None else None

    def upsert(self, seed: EndpointSeed) -> Endpoint:
        """Insert a definition, or replace the existing one for the same pair."""
        if seed.operation == Operation.GET_CLEARANCE_STATUS and not (seed.payload_template or "").strip():
            # Nothing is logged to decode ids from, so pollers cannot re-use the invocation
            logger.warning(
                "Status endpoint has no payload template; polling retry budget cannot apply",
                provider=seed.provider_code,
                http_method=seed.http_method,
            )
        values = {
            "provider_code": seed.provider_code,
            "operation_code": seed.operation.value,
            "base_url": seed.base_url,
            "path_template": seed.path_template,
            "http_method": seed.http_method,
            "timeout_seconds": seed.timeout_seconds,
            "max_attempts": seed.max_attempts,
            "is_active": seed.is_active,
            "data_models": seed.data_models,
            "payload_template": seed.payload_template,
            "sample_payload": seed.sample_payload,
            "sample_response": seed.sample_response,
            "retrigger": seed.retrigger,
            "retrigger_count": seed.retrigger_count,
            "retrigger_interval_minutes": seed.retrigger_interval_minutes,
            "updated_on": now(),
        }
        existing = self._ops.execute_fetchone(
            select(endpoints_table.c.endpoint_id).where(
                and_(
                    endpoints_table.c.provider_code == seed.provider_code,
                    endpoints_table.c.operation_code == seed.operation.value,
                )
            )
        )
        if existing is not None:
            endpoint_id = int(existing.endpoint_id)
            self._ops.execute_update(update(endpoints_table).where(endpoints_table.c.endpoint_id == endpoint_id).values(**values))
            logger.info("Endpoint definition replaced", provider=seed.provider_code, operation=seed.operation.value)
        else:
            endpoint_id = self._ops.execute_insert(endpoints_table.insert().values(created_on=values["updated_on"], **values))
            logger.info("Endpoint definition added", provider=seed.provider_code, operation=seed.operation.value)

        row = self._ops.execute_fetchone(select(endpoints_table).where(endpoints_table.c.endpoint_id == endpoint_id))
        if row is None:
            raise ValueError(f"Endpoint {endpoint_id} vanished after write")
        return self._repo.load(row)
