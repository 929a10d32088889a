"""
Clearbridge: invocation lifecycle and cross-system correlation for clearance providers.

Drives outbound clearance requests to external providers and reconciles their
asynchronous responses back into internal case state, using only what was
durably logged.
"""

__version__ = "0.1.0"
