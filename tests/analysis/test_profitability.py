import math

import pytest

import analysis.profitability as pm


def test_flash_fee_is_nine_basis_points():
    assert pm.flash_fee(5000) == pytest.approx(4.5)
    assert pm.flash_fee(0) == 0


@pytest.mark.parametrize("liquidity", [10_000, 50_000, 250_000, 1_000_000])
def test_price_impact_increases_with_loan_size(liquidity):
    impacts = [pm.price_impact_pct(loan, liquidity) for loan in (100, 1000, 5000, 20000)]
    assert impacts == sorted(impacts)
    assert len(set(impacts)) == len(impacts)


@pytest.mark.parametrize("loan", [100, 5000, 20000])
def test_price_impact_decreases_with_liquidity(loan):
    impacts = [pm.price_impact_pct(loan, liquidity) for liquidity in (10_000, 50_000, 1_000_000)]
    assert impacts == sorted(impacts, reverse=True)


def test_price_impact_for_empty_pool_is_infinite():
    assert math.isinf(pm.price_impact_pct(5000, 0))


def test_slippage_tolerance_is_doubled_impact():
    assert pm.slippage_tolerance_pct(10.0) == 20.0
    assert pm.slippage_tolerance_pct(0.5) == 1.0
    assert pm.slippage_tolerance_pct(0.125) == 0.25


@pytest.mark.parametrize("impact", [0.0, 0.001, 0.02, 0.049])
def test_slippage_tolerance_never_drops_below_floor(impact):
    assert pm.slippage_tolerance_pct(impact) == 0.1


def test_slippage_tolerance_rounds_half_up_to_cents():
    # 0.0625 * 2 = 0.125 -> 0.13
    assert pm.slippage_tolerance_pct(0.0625) == 0.13
    assert pm.slippage_tolerance_pct(0.0624) == 0.12
    assert pm.round2(2.675) == 2.68


def test_cost_floor_adds_flash_fee_to_slippage():
    assert pm.cost_floor_bps(1.0) == 109
    assert pm.cost_floor_bps(0.1) == 19
    assert pm.cost_floor_bps(20.0) == 2009


def test_clears_cost_floor_is_strict():
    assert not pm.clears_cost_floor(109, 1.0)
    assert pm.clears_cost_floor(110, 1.0)
    assert not pm.clears_cost_floor(100, 1.0)
    assert not pm.clears_cost_floor(10_000, float('inf'))


def test_net_profit_subtracts_fee_and_gas():
    # 1.5% of 5000 = 75; minus 4.5 fee and 0.5 gas
    assert pm.net_profit_usd(5000, 1.5, 0.5) == pytest.approx(70.0)
    assert pm.net_profit_usd(5000, 0.1, 0.5) == pytest.approx(0.0)
