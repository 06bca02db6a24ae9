from datetime import datetime, timezone

import pytest

from analysis.detector import build_route
from analysis.models import MarketSample, Opportunity, RouteStep, RouteStepKind, validate_route

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def make_sample(**overrides):
    fields = dict(
        pair_id="0xpair",
        base_symbol="WETH",
        quote_symbol="USDC",
        price_usd=3000.0,
        liquidity_usd=250_000.0,
        source_venue="netswap",
        observed_at=NOW,
    )
    fields.update(overrides)
    return MarketSample(**fields)


def make_opportunity(**overrides):
    fields = dict(
        id="abc123",
        pair_id="0xpair",
        base_symbol="WETH",
        quote_symbol="USDC",
        buy_venue="netswap",
        sell_venue="hermes",
        price_usd=3000.0,
        liquidity_usd=250_000.0,
        spread_bps=150,
        loan_amount_usd=5000.0,
        flash_fee_usd=4.5,
        price_impact_pct=2.0,
        slippage_tolerance_pct=4.0,
        estimated_gas_usd=0.5,
        net_profit_usd=70.0,
        route=build_route(make_sample(), "hermes", 5000.0, 1.5),
        created_at=NOW,
    )
    fields.update(overrides)
    return Opportunity(**fields)


@pytest.mark.parametrize("price", [0.0, -1.0, float("nan"), float("inf")])
def test_sample_rejects_non_positive_or_non_finite_price(price):
    with pytest.raises(ValueError):
        make_sample(price_usd=price)


def test_sample_rejects_negative_liquidity():
    with pytest.raises(ValueError):
        make_sample(liquidity_usd=-5.0)


def test_sample_allows_empty_pool():
    assert make_sample(liquidity_usd=0.0).liquidity_usd == 0.0


def test_route_renders_numbered_steps():
    route = build_route(make_sample(), "hermes", 5000.0, 1.5)
    assert [str(step) for step in route] == [
        "1. Flash Loan 5,000 USDC (Aave V3)",
        "2. Buy WETH on netswap ($3000.0000)",
        "3. Sell WETH on hermes (+1.50%)",
        "4. Repay Loan + 0.09% Fee",
    ]


def test_route_must_start_with_borrow_and_end_with_repay():
    with pytest.raises(ValueError):
        validate_route((
            RouteStep(1, RouteStepKind.BUY, "Buy"),
            RouteStep(2, RouteStepKind.REPAY, "Repay"),
        ))
    with pytest.raises(ValueError):
        validate_route((
            RouteStep(1, RouteStepKind.BORROW, "Borrow"),
            RouteStep(3, RouteStepKind.REPAY, "Repay"),
        ))


def test_opportunity_is_immutable():
    opp = make_opportunity()
    with pytest.raises(AttributeError):
        opp.net_profit_usd = 1.0


def test_opportunity_rejects_non_positive_spread():
    with pytest.raises(ValueError):
        make_opportunity(spread_bps=0)


def test_opportunity_helpers():
    opp = make_opportunity()
    assert opp.symbol == "WETH/USDC"
    assert opp.spread_pct == 1.5
    assert len(opp.path()) == 4
