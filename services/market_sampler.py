#!/usr/bin/env python3
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from analysis.models import MarketSample
from services.dexscreener_client import DexScreenerClient


class MarketSampler:
    """Polls DexScreener for the allow-listed tokens and normalizes pairs into samples.

    poll() raises TransientNetworkError on transport failure and returns an
    empty list when nothing matches the chain, venue and token filters.
    """

    def __init__(
        self,
        dex_client: DexScreenerClient,
        chain_id: str,
        token_addresses: Iterable[str],
        venues: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.dex_client = dex_client
        self.chain_id = chain_id
        self.token_addresses = [address.lower() for address in token_addresses]
        self.venues = {venue.lower() for venue in venues} if venues else None
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.poll_count = 0

    async def poll(self) -> List[MarketSample]:
        self.poll_count += 1
        data = await self.dex_client.get_token_pairs(self.token_addresses)
        observed_at = self._clock()

        samples: List[MarketSample] = []
        seen: set[str] = set()
        for pair in (data or {}).get('pairs') or []:
            sample = self._normalize(pair, observed_at)
            if sample is None or sample.pair_id in seen:
                continue
            seen.add(sample.pair_id)
            samples.append(sample)
        return samples

    def _normalize(self, pair: Dict, observed_at: datetime) -> Optional[MarketSample]:
        if pair.get('chainId') != self.chain_id:
            return None

        dex_id = (pair.get('dexId') or '').lower()
        if not dex_id or (self.venues is not None and dex_id not in self.venues):
            return None

        try:
            base = pair['baseToken']
            quote = pair['quoteToken']
            pair_id = pair['pairAddress']
        except (KeyError, TypeError):
            return None
        if not isinstance(base, dict) or not isinstance(quote, dict):
            return None

        involved = {(base.get('address') or '').lower(), (quote.get('address') or '').lower()}
        if involved.isdisjoint(self.token_addresses):
            return None

        try:
            price_usd = float(pair.get('priceUsd'))
        except (ValueError, TypeError):
            return None
        if price_usd <= 0:
            return None

        liquidity = pair.get('liquidity')
        try:
            liquidity_usd = float(liquidity.get('usd') or 0.0) if isinstance(liquidity, dict) else 0.0
        except (ValueError, TypeError):
            liquidity_usd = 0.0

        try:
            return MarketSample(
                pair_id=pair_id,
                base_symbol=base.get('symbol') or '?',
                quote_symbol=quote.get('symbol') or '?',
                price_usd=price_usd,
                liquidity_usd=max(liquidity_usd, 0.0),
                source_venue=dex_id,
                observed_at=observed_at,
            )
        except ValueError:
            return None
