"""Invocation engine: context resolution, request composition, attempts, sweeps.

Entry points:
- InvocationManager: caller-facing create/run/sweep operations
- SweepScheduler: periodic loop over the four sweeps
- build_services: wires everything from ClearbridgeSettings
"""

from clearbridge.engine.composer import RequestComposer
from clearbridge.engine.manager import InvocationManager
from clearbridge.engine.polling import StatusPoller
from clearbridge.engine.resolver import ContextResolver
from clearbridge.engine.runner import AttemptGuard, InvocationRunner, classify_failure, format_attempt_error
from clearbridge.engine.scheduler import Sweep, SweepScheduler
from clearbridge.engine.services import Services, build_services

__all__ = [
    "AttemptGuard",
    "ContextResolver",
    "InvocationManager",
    "InvocationRunner",
    "RequestComposer",
    "Services",
    "StatusPoller",
    "Sweep",
    "SweepScheduler",
    "build_services",
    "classify_failure",
    "format_attempt_error",
]
