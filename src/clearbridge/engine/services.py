# src/clearbridge/engine/services.py
"""Construction of the engine's object graph from settings."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from clearbridge.clients.http import ProviderHTTPClient
from clearbridge.clients.tokens import TokenCache
from clearbridge.core.config import ClearbridgeSettings
from clearbridge.engine.composer import RequestComposer
from clearbridge.engine.manager import InvocationManager
from clearbridge.engine.resolver import ContextResolver
from clearbridge.engine.runner import InvocationRunner
from clearbridge.engine.scheduler import SweepScheduler
from clearbridge.providers.interpreter import ResponseInterpreter
from clearbridge.providers.registry import ProviderRegistry, build_registry
from clearbridge.store.catalog import EndpointCatalog
from clearbridge.store.clearances import ClearanceStore
from clearbridge.store.database import ClearanceDB
from clearbridge.store.invocations import InvocationStore


@dataclass
class Services:
    """Every long-lived collaborator of one engine instance."""

    db: ClearanceDB
    invocations: InvocationStore
    clearances: ClearanceStore
    catalog: EndpointCatalog
    registry: ProviderRegistry
    http_client: ProviderHTTPClient
    tokens: TokenCache
    resolver: ContextResolver
    composer: RequestComposer
    interpreter: ResponseInterpreter
    runner: InvocationRunner
    manager: InvocationManager
    scheduler: SweepScheduler

    def close(self) -> None:
        self.http_client.close()
        self.db.close()


def build_services(
    settings: ClearbridgeSettings,
    db: ClearanceDB | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> Services:
    """Wire stores, provider profiles, HTTP, runner, manager and scheduler.

    ``db`` defaults to the database named in settings; ``transport`` lets
    tests route provider calls to a mock.
    """
    if db is None:
        db = ClearanceDB.from_url(settings.database.url, echo=settings.database.echo)

    invocations = InvocationStore(db)
    clearances = ClearanceStore(db)
    catalog = EndpointCatalog(db)
    registry = build_registry(clearances, settings.providers)

    http_client = ProviderHTTPClient(default_timeout=settings.http.default_timeout_seconds, transport=transport)
    tokens = TokenCache(http_client, settings.providers)

    resolver = ContextResolver(invocations, clearances, catalog, registry)
    composer = RequestComposer(clearances, registry)
    interpreter = ResponseInterpreter(registry)
    runner = InvocationRunner(
        invocations=invocations,
        clearances=clearances,
        catalog=catalog,
        resolver=resolver,
        composer=composer,
        interpreter=interpreter,
        http_client=http_client,
        tokens=tokens,
    )
    manager = InvocationManager(
        invocations=invocations,
        clearances=clearances,
        catalog=catalog,
        resolver=resolver,
        registry=registry,
        runner=runner,
        batch_size=settings.retry_sweep.batch_size,
    )
    scheduler = SweepScheduler.for_manager(manager, settings.scheduler)

    return Services(
        db=db,
        invocations=invocations,
        clearances=clearances,
        catalog=catalog,
        registry=registry,
        http_client=http_client,
        tokens=tokens,
        resolver=resolver,
        composer=composer,
        interpreter=interpreter,
        runner=runner,
        manager=manager,
        scheduler=scheduler,
    )
