# tests/unit/clients/test_token_cache.py
"""Tests for the per-provider bearer token cache."""

import threading
from collections.abc import Iterator
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from clearbridge.clients.http import ProviderHTTPClient
from clearbridge.clients.tokens import TokenCache, is_auth_failure
from clearbridge.contracts import TokenAcquisitionError
from clearbridge.core.config import ProviderSettings

TOKEN_URL = "https://login.example.test/oauth2/token"

SECURED = ProviderSettings(
    requires_authentication=True,
    token_url=TOKEN_URL,
    client_id="clearbridge",
    client_secret="s3cret",
    scope="api://secured/.default",
    cache_expiration_buffer_seconds=60,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def http_client() -> Iterator[ProviderHTTPClient]:
    client = ProviderHTTPClient()
    yield client
    client.close()


class TestTokenCache:
    def test_unconfigured_provider_needs_no_token(self, http_client: ProviderHTTPClient) -> None:
        """Providers without auth settings get None and no request is made."""
        cache = TokenCache(http_client, {"OPEN": ProviderSettings()})

        assert cache.get_token("OPEN") is None
        assert cache.get_token("UNKNOWN") is None
        assert cache.fetch_count == 0
        assert cache.requires_authentication("open") is False

    @respx.mock
    def test_token_cached_until_buffer(self, http_client: ProviderHTTPClient) -> None:
        """A token is reused until expires_in minus the buffer elapses."""
        route = respx.post(TOKEN_URL).mock(
            side_effect=[
                httpx.Response(200, json={"access_token": "first", "expires_in": 3600}),
                httpx.Response(200, json={"access_token": "second", "expires_in": 3600}),
            ]
        )
        clock = FakeClock()
        cache = TokenCache(http_client, {"secured": SECURED}, clock=clock)

        assert cache.get_token("SECURED") == "first"
        clock.now += 3539
        assert cache.get_token("secured") == "first"
        clock.now += 2
        assert cache.get_token("SECURED") == "second"
        assert cache.fetch_count == 2

        form = parse_qs(route.calls[0].request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert form["client_id"] == ["clearbridge"]
        assert form["scope"] == ["api://secured/.default"]

    @respx.mock
    def test_invalidate_forces_refetch(self, http_client: ProviderHTTPClient) -> None:
        """After invalidate() the next call fetches a new token."""
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"access_token": "tok"}))
        cache = TokenCache(http_client, {"SECURED": SECURED})

        cache.get_token("SECURED")
        cache.invalidate("SECURED")
        cache.get_token("SECURED")

        assert cache.fetch_count == 2

    @respx.mock
    def test_concurrent_callers_fetch_once(self, http_client: ProviderHTTPClient) -> None:
        """Callers racing on an empty cache share one fetch."""
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"access_token": "shared"}))
        cache = TokenCache(http_client, {"SECURED": SECURED})
        results: list[str | None] = []
        start = threading.Barrier(8)

        def worker() -> None:
            start.wait()
            results.append(cache.get_token("SECURED"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["shared"] * 8
        assert cache.fetch_count == 1

    @respx.mock
    def test_rejected_token_request_raises(self, http_client: ProviderHTTPClient) -> None:
        """A non-2xx token response is a TokenAcquisitionError."""
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(401, json={"error": "invalid_client"}))
        cache = TokenCache(http_client, {"SECURED": SECURED})

        with pytest.raises(TokenAcquisitionError, match="SECURED"):
            cache.get_token("SECURED")

    @respx.mock
    def test_missing_access_token_raises(self, http_client: ProviderHTTPClient) -> None:
        """A 200 without access_token is still a failure."""
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"token_type": "Bearer"}))
        cache = TokenCache(http_client, {"SECURED": SECURED})

        with pytest.raises(TokenAcquisitionError):
            cache.get_token("SECURED")


class TestIsAuthFailure:
    @pytest.mark.parametrize(
        ("status", "body", "expected"),
        [
            (401, None, True),
            (400, '{"error": "invalid_token"}', True),
            (400, '{"error": "missing field"}', False),
            (403, "unauthorized", False),
            (500, None, False),
        ],
    )
    def test_classification(self, status: int, body: str | None, expected: bool) -> None:
        """401 always, 400 only when the body names an auth problem."""
        assert is_auth_failure(status, body) is expected
