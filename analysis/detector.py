#!/usr/bin/env python3
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

import analysis.profitability as pm
from analysis.models import MarketSample, Opportunity, RouteStep, RouteStepKind
from analysis.spread import SpreadSource
from constants import (
    DEFAULT_GAS_COST_USD,
    DEFAULT_LOAN_AMOUNT_USD,
    DEFAULT_MAX_GAS_GWEI,
    DEFAULT_MIN_LIQUIDITY_USD,
    FLASH_FEE_BPS,
    FLASH_LOAN_ASSET,
    FLASH_LOAN_PROVIDER,
)


class RejectionReason(str, Enum):
    INSUFFICIENT_LIQUIDITY = 'INSUFFICIENT_LIQUIDITY'
    GAS_TOO_HIGH = 'GAS_TOO_HIGH'
    NO_SPREAD = 'NO_SPREAD'
    SPREAD_BELOW_FLOOR = 'SPREAD_BELOW_FLOOR'
    UNPROFITABLE = 'UNPROFITABLE'


@dataclass(frozen=True)
class Detection:
    """Outcome of evaluating one sample: an opportunity, or why there is none."""
    opportunity: Optional[Opportunity] = None
    rejection: Optional[RejectionReason] = None
    detail: str = ""

    @property
    def admitted(self) -> bool:
        return self.opportunity is not None


def fixed_loan_size(amount_usd: float) -> Callable[[MarketSample], float]:
    def _size(sample: MarketSample) -> float:
        return amount_usd
    return _size


class OpportunityDetector:
    """Applies the profitability model's gates to a sample.

    Gates run liquidity -> gas -> spread -> cost floor -> net profit and stop
    at the first failure, so rejection reasons are reproducible in logs.
    """

    def __init__(
        self,
        spread_source: SpreadSource,
        *,
        loan_sizer: Optional[Callable[[MarketSample], float]] = None,
        min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD,
        max_gas_gwei: float = DEFAULT_MAX_GAS_GWEI,
        gas_cost_usd: float = DEFAULT_GAS_COST_USD,
        min_profit_usd: float = 0.0,
    ):
        self.spread_source = spread_source
        self.loan_sizer = loan_sizer or fixed_loan_size(DEFAULT_LOAN_AMOUNT_USD)
        self.min_liquidity_usd = min_liquidity_usd
        self.max_gas_gwei = max_gas_gwei
        self.gas_cost_usd = gas_cost_usd
        self.min_profit_usd = max(0.0, min_profit_usd)

    def detect(
        self,
        sample: MarketSample,
        gas_price_gwei: float,
        now: datetime,
        tick: Sequence[MarketSample] = (),
    ) -> Optional[Opportunity]:
        return self.evaluate(sample, gas_price_gwei, now, tick).opportunity

    def evaluate(
        self,
        sample: MarketSample,
        gas_price_gwei: float,
        now: datetime,
        tick: Sequence[MarketSample] = (),
    ) -> Detection:
        if sample.liquidity_usd <= self.min_liquidity_usd:
            return Detection(
                rejection=RejectionReason.INSUFFICIENT_LIQUIDITY,
                detail=f"{sample.symbol} on {sample.source_venue}: depth ${sample.liquidity_usd:,.0f} <= ${self.min_liquidity_usd:,.0f}",
            )

        if gas_price_gwei > self.max_gas_gwei:
            return Detection(
                rejection=RejectionReason.GAS_TOO_HIGH,
                detail=f"gas {gas_price_gwei:.1f} gwei > {self.max_gas_gwei:.1f} gwei",
            )

        spread = self.spread_source.quote(sample, tick)
        if spread is None or spread.spread_bps <= 0:
            return Detection(
                rejection=RejectionReason.NO_SPREAD,
                detail=f"{sample.symbol} on {sample.source_venue}: no actionable spread",
            )

        loan_amount = self.loan_sizer(sample)
        impact = pm.price_impact_pct(loan_amount, sample.liquidity_usd)
        tolerance = pm.slippage_tolerance_pct(impact)
        if not pm.clears_cost_floor(spread.spread_bps, tolerance):
            return Detection(
                rejection=RejectionReason.SPREAD_BELOW_FLOOR,
                detail=(
                    f"{sample.symbol}: spread {spread.spread_bps / 100:.2f}% <= "
                    f"slippage {tolerance:.2f}% + fee {FLASH_FEE_BPS / 100:.2f}%"
                ),
            )

        spread_pct = spread.spread_bps / 100
        net = pm.net_profit_usd(loan_amount, spread_pct, self.gas_cost_usd)
        if net <= self.min_profit_usd:
            return Detection(
                rejection=RejectionReason.UNPROFITABLE,
                detail=f"{sample.symbol}: net ${net:.2f} <= ${self.min_profit_usd:.2f}",
            )

        opportunity = Opportunity(
            id=uuid.uuid4().hex[:12],
            pair_id=sample.pair_id,
            base_symbol=sample.base_symbol,
            quote_symbol=sample.quote_symbol,
            buy_venue=sample.source_venue,
            sell_venue=spread.sell_venue,
            price_usd=sample.price_usd,
            liquidity_usd=sample.liquidity_usd,
            spread_bps=spread.spread_bps,
            loan_amount_usd=loan_amount,
            flash_fee_usd=pm.flash_fee(loan_amount),
            price_impact_pct=impact,
            slippage_tolerance_pct=tolerance,
            estimated_gas_usd=self.gas_cost_usd,
            net_profit_usd=net,
            route=build_route(sample, spread.sell_venue, loan_amount, spread_pct),
            created_at=now,
        )
        return Detection(
            opportunity=opportunity,
            detail=(
                f"ARBITRAGE: {sample.source_venue} Liquidity ${sample.liquidity_usd / 1000:.0f}k -> "
                f"Est. Slippage {tolerance}% | Profit ${net:.2f}"
            ),
        )


def build_route(sample: MarketSample, sell_venue: str, loan_amount_usd: float, spread_pct: float) -> tuple[RouteStep, ...]:
    return (
        RouteStep(1, RouteStepKind.BORROW, f"Flash Loan {loan_amount_usd:,.0f} {FLASH_LOAN_ASSET} ({FLASH_LOAN_PROVIDER})"),
        RouteStep(2, RouteStepKind.BUY, f"Buy {sample.base_symbol} on {sample.source_venue} (${sample.price_usd:.4f})"),
        RouteStep(3, RouteStepKind.SELL, f"Sell {sample.base_symbol} on {sell_venue} (+{spread_pct:.2f}%)"),
        RouteStep(4, RouteStepKind.REPAY, f"Repay Loan + {FLASH_FEE_BPS / 100:.2f}% Fee"),
    )
