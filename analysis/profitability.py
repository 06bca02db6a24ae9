"""Pure cost and profit model for a single flash-loan arbitrage leg.

Every function here is deterministic and side-effect free. Percentages are
expressed in percent units (``1.0`` means 1%), spreads in integer basis points.
"""
from decimal import Decimal, ROUND_HALF_UP

from constants import FLASH_FEE_BPS, MIN_SLIPPAGE_TOLERANCE_PCT, SLIPPAGE_SAFETY_MULTIPLIER


def flash_fee(loan_amount_usd: float) -> float:
    return loan_amount_usd * FLASH_FEE_BPS / 10000


def price_impact_pct(loan_amount_usd: float, liquidity_usd: float) -> float:
    """Constant-product approximation of market impact; infinite for empty pools."""
    if liquidity_usd <= 0:
        return float('inf')
    return (loan_amount_usd / liquidity_usd) * 100


def round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def slippage_tolerance_pct(impact_pct: float) -> float:
    """Twice the modeled impact, floored at 0.1%."""
    if impact_pct == float('inf'):
        return float('inf')
    return max(MIN_SLIPPAGE_TOLERANCE_PCT, round2(impact_pct * SLIPPAGE_SAFETY_MULTIPLIER))


def cost_floor_bps(tolerance_pct: float) -> float:
    """Slippage buffer plus flash fee, in basis points."""
    if tolerance_pct == float('inf'):
        return float('inf')
    # tolerance carries two decimals, so the product is a whole number of bps
    return round(tolerance_pct * 100) + FLASH_FEE_BPS


def clears_cost_floor(spread_bps: int, tolerance_pct: float) -> bool:
    return spread_bps > cost_floor_bps(tolerance_pct)


def net_profit_usd(loan_amount_usd: float, spread_pct: float, estimated_gas_usd: float) -> float:
    gross = loan_amount_usd * (spread_pct / 100)
    return gross - flash_fee(loan_amount_usd) - estimated_gas_usd
