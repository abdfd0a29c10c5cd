"""Shared fixtures: scripted NDJSON bodies and mock HTTP clients."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from relaystream.config import ClientConfig, RetrySpec
from relaystream.events.bus import EventBus


class ChunkStream(httpx.AsyncByteStream):
    """Response body that yields scripted chunks.

    Items are ``bytes`` (yielded as one chunk) or a ``float`` (sleep that many
    seconds first).  With ``hang=True`` the body never ends.
    """

    def __init__(self, items: list[Any], hang: bool = False) -> None:
        self._items = items
        self._hang = hang
        self.closed = False
        self.yielded = 0

    async def __aiter__(self):
        for item in self._items:
            if isinstance(item, (int, float)):
                await asyncio.sleep(item)
                continue
            self.yielded += 1
            yield item
        if self._hang:
            await asyncio.sleep(3600)

    async def aclose(self) -> None:
        self.closed = True


def ndjson_lines(*records: Any) -> bytes:
    """Encode records (dicts or raw strings) as NDJSON bytes."""
    out = []
    for record in records:
        out.append(record if isinstance(record, str) else json.dumps(record))
    return ("\n".join(out) + "\n").encode("utf-8")


def ndjson_response(
    items: list[Any],
    *,
    status: int = 200,
    content_type: str | None = "application/x-ndjson",
    headers: dict[str, str] | None = None,
    hang: bool = False,
) -> httpx.Response:
    all_headers = dict(headers or {})
    if content_type is not None:
        all_headers["content-type"] = content_type
    return httpx.Response(
        status,
        headers=all_headers,
        stream=ChunkStream(items, hang=hang),
        request=httpx.Request("POST", "http://test/api/v1/responses"),
    )


@pytest.fixture
def lines() -> Callable[..., bytes]:
    return ndjson_lines


@pytest.fixture
def make_response() -> Callable[..., httpx.Response]:
    return ndjson_response


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        base_url="http://test/api/v1",
        api_key="mr_sk_test",
        default_model="demo-model",
        retry=RetrySpec(max_attempts=1),
    )


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], Any]], httpx.AsyncClient]:
    """Build an ``httpx.AsyncClient`` whose requests go to *handler*."""

    def _make(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
