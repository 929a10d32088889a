# src/clearbridge/clients/tokens.py
"""Bearer token cache for providers that use OAuth2 client credentials.

Usage:
    cache = TokenCache(http_client, settings.providers)
    token = cache.get_token("EARTHMED")  # None when the provider needs no auth
    ...
    cache.invalidate("EARTHMED")  # after a 401, the next call fetches afresh
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

import structlog

from clearbridge.clients.http import ProviderHTTPClient, response_json
from clearbridge.contracts.errors import TokenAcquisitionError
from clearbridge.core.config import ProviderSettings

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3599

_AUTH_FAILURE_MARKERS = (
    "invalid_token",
    "token_expired",
    "expired_token",
    "unauthorized",
    "access_denied",
    "authentication",
)


def is_auth_failure(status_code: int, body: str | None) -> bool:
    """True for 401, or a 400 whose body names a token/auth problem."""
    if status_code == 401:
        return True
    if status_code == 400 and body:
        lowered = body.lower()
        return any(marker in lowered for marker in _AUTH_FAILURE_MARKERS)
    return False


@dataclass(frozen=True, slots=True)
class _CachedToken:
    access_token: str
    expires_at: float


class TokenCache:
    """Per-provider bearer token cache.

    Each provider code has its own lock, so a slow token endpoint for one
    provider never blocks calls to another. Inside the lock the cache is
    checked again: the first caller fetches, callers that were waiting see
    the fresh token.
    """

    def __init__(
        self,
        http_client: ProviderHTTPClient,
        providers: Mapping[str, ProviderSettings],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http_client
        self._providers = {code.upper(): settings for code, settings in providers.items()}
        self._clock = clock
        self._tokens: dict[str, _CachedToken] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.fetch_count = 0

    def _lock_for(self, provider_code: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(provider_code)
            if lock is None:
                lock = threading.Lock()
                self._locks[provider_code] = lock
            return lock

    def _cached(self, provider_code: str) -> str | None:
        entry = self._tokens.get(provider_code)
        if entry is not None and entry.expires_at > self._clock():
            return entry.access_token
        return None

    def requires_authentication(self, provider_code: str) -> bool:
        settings = self._providers.get(provider_code.upper())
        return settings is not None and settings.requires_authentication

    def get_token(self, provider_code: str) -> str | None:
        """Valid access token for a provider, or None if it needs no auth.

        Raises:
            TokenAcquisitionError: If the provider needs auth and no token was issued
        """
        code = provider_code.upper()
        settings = self._providers.get(code)
        if settings is None or not settings.requires_authentication:
            return None

        token = self._cached(code)
        if token is not None:
            return token

        with self._lock_for(code):
            token = self._cached(code)
            if token is not None:
                return token
            cached = self._fetch(code, settings)
            self._tokens[code] = cached
            return cached.access_token

    def invalidate(self, provider_code: str) -> None:
        """Drop the cached token so the next call fetches a new one."""
        code = provider_code.upper()
        with self._lock_for(code):
            if self._tokens.pop(code, None) is not None:
                logger.info("Access token invalidated", provider=code)

    def _fetch(self, code: str, settings: ProviderSettings) -> _CachedToken:
        # Validated by ProviderSettings when requires_authentication is set
        assert settings.token_url is not None
        form = urlencode(
            {
                "grant_type": "client_credentials",
                "client_id": settings.client_id or "",
                "client_secret": settings.client_secret or "",
                "scope": settings.scope,
            }
        )
        result = self._http.post_form(settings.token_url, form, timeout=settings.token_timeout_seconds)
        self.fetch_count += 1
        if not result.is_success:
            logger.error(
                "Token request rejected",
                provider=code,
                status_code=result.status_code,
                error=result.error_message,
            )
            raise TokenAcquisitionError(code)

        payload = response_json(result)
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            logger.error("Token response carried no access_token", provider=code)
            raise TokenAcquisitionError(code)

        expires_in = payload.get("expires_in", DEFAULT_EXPIRES_IN_SECONDS)
        try:
            lifetime = int(expires_in)
        except (TypeError, ValueError):
            lifetime = DEFAULT_EXPIRES_IN_SECONDS
        cache_seconds = max(0, lifetime - settings.cache_expiration_buffer_seconds)
        logger.info("Access token acquired", provider=code, cache_seconds=cache_seconds)
        return _CachedToken(access_token=access_token, expires_at=self._clock() + cache_seconds)
