#!/usr/bin/env python3
import asyncio
import time
from typing import Dict, Iterable

import aiohttp
from constants import DEXSCREENER_API_BASE_URL, DEXSCREENER_MAX_TOKENS_PER_QUERY, DEFAULT_POLL_TIMEOUT_SECONDS
from errors import TransientNetworkError


async def api_get(
    url: str,
    session: aiohttp.ClientSession,
    retries: int = 1,
    timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
    retry_delay: float = 0.5,
) -> Dict:
    """Makes an async GET request with retries and a total timeout.

    Raises TransientNetworkError once every attempt has failed.
    """
    for attempt in range(retries):
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                raise TransientNetworkError(f"GET {url} failed after {retries} attempts: {e!r}") from e
    raise TransientNetworkError(f"GET {url} was not attempted (retries={retries})")


class DexScreenerClient:
    def __init__(self, session: aiohttp.ClientSession, timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS):
        self.session = session
        self.timeout = timeout
        self._last_request_time = 0.0
        self._rate_limit_delay = 0.2 # 300 req/min on the pairs and tokens endpoints

    async def _wait_for_rate_limit(self):
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def get_token_pairs(self, token_addresses: Iterable[str]) -> Dict:
        """Gets every pair involving any of the given token addresses."""
        addresses = list(dict.fromkeys(token_addresses))
        if not addresses:
            return {'pairs': []}
        if len(addresses) > DEXSCREENER_MAX_TOKENS_PER_QUERY:
            raise ValueError(f"DexScreener accepts at most {DEXSCREENER_MAX_TOKENS_PER_QUERY} token addresses per query")

        await self._wait_for_rate_limit()
        url = f"{DEXSCREENER_API_BASE_URL}/tokens/{','.join(addresses)}"
        return await api_get(url, self.session, timeout=self.timeout)
