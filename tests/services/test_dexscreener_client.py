import json

import aiohttp
import pytest

from errors import TransientNetworkError
from services.dexscreener_client import DexScreenerClient, api_get


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.status = 200

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.urls = []

    def get(self, url, timeout):
        self.urls.append(url)
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        response = self._responses.pop(0)
        if isinstance(response, FakeResponse):
            return response
        if isinstance(response, Exception):
            raise response
        return FakeResponse(response)


@pytest.mark.asyncio
async def test_api_get_retries_then_succeeds():
    session = FakeSession([aiohttp.ClientConnectionError("reset"), {"pairs": []}])

    data = await api_get("https://example.test/x", session, retries=2, retry_delay=0)

    assert data == {"pairs": []}
    assert len(session.urls) == 2


@pytest.mark.asyncio
async def test_api_get_raises_transient_error_after_last_attempt():
    session = FakeSession([aiohttp.ClientConnectionError("down"), aiohttp.ClientConnectionError("down")])

    with pytest.raises(TransientNetworkError):
        await api_get("https://example.test/x", session, retries=2, retry_delay=0)


@pytest.mark.asyncio
async def test_get_token_pairs_joins_unique_addresses():
    session = FakeSession([{"pairs": [{"pairAddress": "0x1"}]}])
    client = DexScreenerClient(session)
    client._rate_limit_delay = 0

    data = await client.get_token_pairs(["0xaaa", "0xbbb", "0xaaa"])

    assert data["pairs"][0]["pairAddress"] == "0x1"
    assert session.urls == ["https://api.dexscreener.com/latest/dex/tokens/0xaaa,0xbbb"]


@pytest.mark.asyncio
async def test_get_token_pairs_without_addresses_skips_the_request():
    session = FakeSession([])
    client = DexScreenerClient(session)

    assert await client.get_token_pairs([]) == {"pairs": []}
    assert session.urls == []


@pytest.mark.asyncio
async def test_get_token_pairs_rejects_oversized_queries():
    client = DexScreenerClient(FakeSession([]))
    with pytest.raises(ValueError):
        await client.get_token_pairs([f"0x{i:040x}" for i in range(31)])


@pytest.mark.asyncio
async def test_api_get_treats_unparseable_body_as_transient():
    session = FakeSession([FakeResponse(json.JSONDecodeError("Expecting value", "<html>", 0))])

    with pytest.raises(TransientNetworkError):
        await api_get("https://example.test/x", session, retries=1, retry_delay=0)
