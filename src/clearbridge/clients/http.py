# src/clearbridge/clients/http.py
"""Provider HTTP client.

One attempt, one request: there is no retry in here. Transport problems are
folded into an HttpResult (408 for timeouts, 0 for everything else) so the
invocation runner classifies every failure the same way.
"""

from __future__ import annotations

import hashlib
import json
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

TIMEOUT_STATUS = 408
TRANSPORT_FAILURE_STATUS = 0

_FORM_PAIR = re.compile(r"^[^=&\s{}\[\]\"]+=[^&]*(&[^=&\s]+=[^&]*)*$")


@dataclass(frozen=True)
class HttpResult:
    """Outcome of one provider call."""

    status_code: int
    body: str | None
    elapsed_ms: int
    error_message: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def build_url(base_url: str, path_template: str, path_id: str | None = None) -> str:
    """Join base URL and path template, substituting ``{id}`` when given.

    Examples:
        >>> build_url("https://p.example/api/", "/requests/{id}", "R-1")
        'https://p.example/api/requests/R-1'
    """
    path = path_template
    if path_id is not None:
        path = path.replace("{id}", path_id)
    if not path:
        return base_url
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def is_form_encoded(body: str) -> bool:
    """True for ``grant_type=...`` bodies and ``k=v&k2=v2`` bodies that are not JSON."""
    text = body.strip()
    if not text:
        return False
    if text.startswith("grant_type="):
        return True
    if text.startswith(("{", "[")):
        try:
            json.loads(text)
        except json.JSONDecodeError:
            pass
        else:
            return False
    return bool(_FORM_PAIR.match(text))


class ProviderHTTPClient:
    """Thin wrapper around a shared httpx.Client for provider calls.

    Example:
        client = ProviderHTTPClient(default_timeout=30.0)
        result = client.send("POST", "https://provider.example/requests", body='{"a": 1}')
        if result.is_success:
            ...
    """

    # Well-known sensitive headers (exact match, case-insensitive).
    _SENSITIVE_HEADERS_EXACT = frozenset(
        {
            "authorization",
            "proxy-authorization",
            "cookie",
            "x-api-key",
            "api-key",
            "x-auth-token",
            "x-access-token",
            "ocp-apim-subscription-key",
        }
    )

    # Delimiter-separated words marking a sensitive header name.
    # "X-Auth-Token" -> {"x","auth","token"} matches; "X-Author" does not.
    _SENSITIVE_HEADER_WORDS = frozenset({"auth", "apikey", "key", "secret", "token", "password", "credential"})

    def __init__(
        self,
        *,
        default_timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            default_timeout: Timeout when a call does not pass one
            headers: Default headers for all requests
            transport: Optional httpx transport (tests)
        """
        self._default_timeout = default_timeout
        self._default_headers = headers or {}
        # httpx.Client is thread-safe; the pool is shared across sweeps.
        self._client = httpx.Client(timeout=default_timeout, follow_redirects=False, transport=transport)

    def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        self._client.close()

    def __enter__(self) -> ProviderHTTPClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _is_sensitive_header(self, header_name: str) -> bool:
        lower_name = header_name.lower()
        if lower_name in self._SENSITIVE_HEADERS_EXACT:
            return True
        segments = [seg for seg in re.split(r"[^a-z0-9]+", lower_name) if seg]
        return any(seg in self._SENSITIVE_HEADER_WORDS for seg in segments)

    def loggable_headers(self, headers: dict[str, str]) -> dict[str, str]:
        """Headers safe for logs: sensitive values replaced by a short fingerprint."""
        result: dict[str, str] = {}
        for name, value in headers.items():
            if self._is_sensitive_header(name):
                digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]
                result[name] = f"<fingerprint:{digest}>"
            else:
                result[name] = value
        return result

    def _prepare_headers(self, body: str | None, headers: dict[str, str] | None) -> dict[str, str]:
        merged = {**self._default_headers, **(headers or {})}
        has_content_type = any(name.lower() == "content-type" for name in merged)
        if body is not None and body.strip() and not has_content_type:
            merged["Content-Type"] = FORM_CONTENT_TYPE if is_form_encoded(body) else JSON_CONTENT_TYPE
        return merged

    def send(
        self,
        method: str,
        url: str,
        *,
        body: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResult:
        """Send one request and fold the outcome into an HttpResult.

        Never raises for transport failures.
        """
        effective_timeout = timeout if timeout is not None else self._default_timeout
        merged_headers = self._prepare_headers(body, headers)
        content = body.encode("utf-8") if body is not None and body.strip() else None

        logger.debug(
            "Sending provider request",
            method=method.upper(),
            url=url,
            headers=self.loggable_headers(merged_headers),
            body_size=len(content) if content is not None else 0,
        )

        start = time.perf_counter()
        try:
            response = self._client.request(
                method.upper(),
                url,
                content=content,
                headers=merged_headers,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            message = f"Request canceled or timed out after {effective_timeout:g} seconds"
            logger.warning("Provider request timed out", url=url, timeout_seconds=effective_timeout)
            return HttpResult(TIMEOUT_STATUS, None, elapsed_ms, message)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.warning("Provider request failed", url=url, error=str(e), error_type=type(e).__name__)
            return HttpResult(TRANSPORT_FAILURE_STATUS, None, elapsed_ms, f"{type(e).__name__}: {e}")

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        result = HttpResult(
            status_code=response.status_code,
            body=response.text,
            elapsed_ms=elapsed_ms,
            error_message=None if response.is_success else (response.reason_phrase or f"HTTP {response.status_code}"),
        )
        logger.debug("Provider response received", url=url, status_code=result.status_code, latency_ms=elapsed_ms)
        return result

    def post_form(self, url: str, form_body: str, *, timeout: float | None = None) -> HttpResult:
        """POST an already-encoded form body (token requests)."""
        return self.send("POST", url, body=form_body, headers={"Content-Type": FORM_CONTENT_TYPE}, timeout=timeout)


def response_json(result: HttpResult) -> Any:
    """Parsed JSON body of a result, or None when absent or not JSON."""
    if result.body is None or not result.body.strip():
        return None
    try:
        return json.loads(result.body)
    except json.JSONDecodeError:
        return None
