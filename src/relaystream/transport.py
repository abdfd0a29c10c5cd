"""HTTP transport built on ``httpx.AsyncClient``.

Adds auth headers and applies the connection-level retry policy (retryable
statuses and network errors, exponential backoff).  Streaming requests
return an unread ``httpx.Response`` that the caller owns and must close.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from relaystream.config import ClientConfig, RetrySpec
from relaystream.errors import ConfigError, TransportError

_logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-ModelRelay-Api-Key"
CLIENT_HEADER = "X-ModelRelay-Client"

_RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)


class HTTPTransport:
    """Async HTTP client for the relay API.

    Parameters
    ----------
    base_url:
        API root, must be ``http://`` or ``https://``.
    api_key / access_token:
        Credentials; the API key goes in ``X-ModelRelay-Api-Key``, the
        token in ``Authorization: Bearer``.
    retry:
        Connection-level retry policy; ``None`` disables retries.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests pass one with a
        ``MockTransport``).  It is not closed by ``aclose()``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        access_token: str = "",
        client_header: str = "",
        connect_timeout_ms: int = 5_000,
        request_timeout_ms: int = 60_000,
        retry: RetrySpec | None = None,
        default_headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        base_url = base_url.strip().rstrip("/")
        if not base_url.startswith(("http://", "https://")):
            raise ConfigError("base_url must start with http:// or https://")
        self.base_url = base_url
        self._request_timeout_ms = request_timeout_ms
        self._connect_timeout_ms = connect_timeout_ms
        self._retry = retry

        headers = dict(default_headers or {})
        if access_token.strip():
            token = access_token.strip()
            if not token.lower().startswith("bearer "):
                token = f"Bearer {token}"
            headers["Authorization"] = token
        if api_key.strip():
            headers[API_KEY_HEADER] = api_key.strip()
        if client_header:
            headers.setdefault(CLIENT_HEADER, client_header)
        self._headers = headers

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    @classmethod
    def from_config(
        cls, config: ClientConfig, http_client: httpx.AsyncClient | None = None,
    ) -> HTTPTransport:
        return cls(
            config.base_url,
            api_key=config.api_key,
            access_token=config.access_token,
            client_header=config.client_header,
            connect_timeout_ms=config.connect_timeout_ms,
            request_timeout_ms=config.request_timeout_ms,
            retry=config.retry,
            default_headers=config.headers,
            http_client=http_client,
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _timeout(self, timeout_ms: int | None, stream: bool) -> httpx.Timeout:
        connect = self._connect_timeout_ms / 1000 if self._connect_timeout_ms else None
        if timeout_ms is None:
            # Streams are bounded by their own deadlines, not the request timeout
            timeout_ms = 0 if stream else self._request_timeout_ms
        total = timeout_ms / 1000 if timeout_ms else None
        return httpx.Timeout(total, connect=connect)

    def _backoff(self, attempt: int) -> float:
        assert self._retry is not None
        delay_ms = min(
            self._retry.base_backoff_ms * (2 ** attempt), self._retry.max_backoff_ms,
        )
        return delay_ms / 1000

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
        stream: bool = False,
        timeout_ms: int | None = None,
    ) -> httpx.Response:
        """Send a request and return the response (non-2xx included).

        With ``stream=True`` the body is not read; the caller must close
        the returned response.
        """
        merged = {**self._headers, **(headers or {}), "Accept": accept}
        url = f"{self.base_url}/{path.lstrip('/')}"
        retry = self._retry
        attempts = max(1, retry.max_attempts) if retry is not None else 1
        if retry is not None and method.upper() == "POST" and not retry.retry_post:
            attempts = 1

        for attempt in range(attempts):
            last = attempt == attempts - 1
            req = self._client.build_request(
                method, url, json=json, headers=merged,
                timeout=self._timeout(timeout_ms, stream),
            )
            try:
                resp = await self._client.send(req, stream=stream)
            except httpx.TimeoutException as e:
                if last:
                    raise TransportError(
                        f"request timed out: {e}", kind="timeout", retries=attempt,
                    ) from e
                _logger.warning(
                    "API timeout (attempt %d/%d): %s", attempt + 1, attempts, e,
                )
                await asyncio.sleep(self._backoff(attempt))
                continue
            except httpx.TransportError as e:
                if last:
                    raise TransportError(
                        f"request failed: {e}", kind="connect", retries=attempt,
                    ) from e
                _logger.warning(
                    "API connection error (attempt %d/%d): %s", attempt + 1, attempts, e,
                )
                await asyncio.sleep(self._backoff(attempt))
                continue

            if resp.status_code in _RETRYABLE_STATUS and not last:
                _logger.warning(
                    "API returned %d (attempt %d/%d), retrying...",
                    resp.status_code, attempt + 1, attempts,
                )
                await resp.aclose()
                await asyncio.sleep(self._backoff(attempt))
                continue
            return resp

        raise AssertionError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client (if owned)."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
