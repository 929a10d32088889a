"""Outbound clients: provider HTTP calls and bearer token caching."""

from clearbridge.clients.http import HttpResult, ProviderHTTPClient, build_url, is_form_encoded
from clearbridge.clients.tokens import TokenCache, is_auth_failure

__all__ = [
    "HttpResult",
    "ProviderHTTPClient",
    "TokenCache",
    "build_url",
    "is_auth_failure",
    "is_form_encoded",
]
