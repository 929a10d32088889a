"""Clearance store: invocation records, endpoint catalog, and clearance state.

SQLAlchemy Core tables behind small store classes:
- ClearanceDB: engine and transaction management
- InvocationStore: invocations and their append-only log
- EndpointCatalog: provider operation definitions
- ClearanceStore: clearance summaries, links, and case entities
"""

from clearbridge.store.catalog import EndpointCatalog
from clearbridge.store.clearances import ClearanceStore, append_remark
from clearbridge.store.database import ClearanceDB, SchemaCompatibilityError
from clearbridge.store.invocations import InvocationStore

__all__ = [
    "ClearanceDB",
    "ClearanceStore",
    "EndpointCatalog",
    "InvocationStore",
    "SchemaCompatibilityError",
    "append_remark",
]
