import itertools
from datetime import datetime, timezone

import pytest

from analysis.detector import build_route
from analysis.models import MarketSample, Opportunity

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_opportunity():
    """Factory for admitted opportunities with unique ids."""
    counter = itertools.count(1)

    def _make(net_profit_usd=70.0, spread_bps=150, base_symbol="METIS", **overrides):
        sample = MarketSample("0xpair", base_symbol, "USDC", 50.0, 1_000_000.0, "netswap", NOW)
        fields = dict(
            id=f"opp{next(counter)}",
            pair_id="0xpair",
            base_symbol=base_symbol,
            quote_symbol="USDC",
            buy_venue="netswap",
            sell_venue="hermes",
            price_usd=50.0,
            liquidity_usd=1_000_000.0,
            spread_bps=spread_bps,
            loan_amount_usd=5000.0,
            flash_fee_usd=4.5,
            price_impact_pct=0.5,
            slippage_tolerance_pct=1.0,
            estimated_gas_usd=0.5,
            net_profit_usd=net_profit_usd,
            route=build_route(sample, "hermes", 5000.0, spread_bps / 100),
            created_at=NOW,
        )
        fields.update(overrides)
        return Opportunity(**fields)

    return _make
