#!/usr/bin/env python3
import math
import random
from typing import Optional, Protocol, Sequence

from analysis.models import MarketSample, SpreadQuote
from constants import (
    SIMULATED_SELL_VENUE,
    SIMULATED_SPREAD_MAX_BPS,
    SIMULATED_SPREAD_MIN_BPS,
    SIMULATED_SPREAD_TRIGGER_PROBABILITY,
)


class SpreadSource(Protocol):
    def quote(self, sample: MarketSample, tick: Sequence[MarketSample]) -> Optional[SpreadQuote]:
        ...


class CrossVenueSpreadSource:
    """Buys on the sample's venue and sells on the highest-priced peer venue of the same tick."""

    def __init__(self, min_peer_liquidity_usd: float = 0.0):
        self.min_peer_liquidity_usd = min_peer_liquidity_usd

    def quote(self, sample: MarketSample, tick: Sequence[MarketSample]) -> Optional[SpreadQuote]:
        peers = [
            other for other in tick
            if other.symbol == sample.symbol
            and other.source_venue != sample.source_venue
            and other.price_usd > sample.price_usd
            and other.liquidity_usd >= self.min_peer_liquidity_usd
        ]
        if not peers:
            return None

        best = max(peers, key=lambda other: other.price_usd)
        spread_bps = math.floor((best.price_usd - sample.price_usd) / sample.price_usd * 10000)
        if spread_bps <= 0:
            return None
        return SpreadQuote(spread_bps=spread_bps, sell_venue=best.source_venue)


class RandomSpreadSource:
    """Simulated deviation from a real quote, for demonstration runs.

    Pass a seeded ``random.Random`` to make a run reproducible.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        trigger_probability: float = SIMULATED_SPREAD_TRIGGER_PROBABILITY,
        min_bps: int = SIMULATED_SPREAD_MIN_BPS,
        max_bps: int = SIMULATED_SPREAD_MAX_BPS,
        sell_venue: str = SIMULATED_SELL_VENUE,
    ):
        if min_bps <= 0 or max_bps <= min_bps:
            raise ValueError("require 0 < min_bps < max_bps")
        self.rng = rng or random.Random()
        self.trigger_probability = trigger_probability
        self.min_bps = min_bps
        self.max_bps = max_bps
        self.sell_venue = sell_venue

    def quote(self, sample: MarketSample, tick: Sequence[MarketSample]) -> Optional[SpreadQuote]:
        if self.rng.random() >= self.trigger_probability:
            return None
        return SpreadQuote(
            spread_bps=self.rng.randrange(self.min_bps, self.max_bps),
            sell_venue=self.sell_venue,
        )
