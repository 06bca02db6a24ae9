#!/usr/bin/env python3
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Tuple


@dataclass(frozen=True)
class MarketSample:
    """One normalized pair quote observed on a venue during a sampling tick."""
    pair_id: str
    base_symbol: str
    quote_symbol: str
    price_usd: float
    liquidity_usd: float
    source_venue: str
    observed_at: datetime

    def __post_init__(self):
        if not math.isfinite(self.price_usd) or self.price_usd <= 0:
            raise ValueError(f"price_usd must be positive, got {self.price_usd}")
        if not math.isfinite(self.liquidity_usd) or self.liquidity_usd < 0:
            raise ValueError(f"liquidity_usd must be non-negative, got {self.liquidity_usd}")

    @property
    def symbol(self) -> str:
        return f"{self.base_symbol}/{self.quote_symbol}"


@dataclass(frozen=True)
class SpreadQuote:
    """Observed spread for a sample and the venue the route would sell on."""
    spread_bps: int
    sell_venue: str


class RouteStepKind(str, Enum):
    BORROW = 'BORROW'
    BUY = 'BUY'
    SELL = 'SELL'
    REPAY = 'REPAY'


@dataclass(frozen=True)
class RouteStep:
    index: int
    kind: RouteStepKind
    description: str

    def __str__(self) -> str:
        return f"{self.index}. {self.description}"


def validate_route(route: Tuple[RouteStep, ...]) -> None:
    """Raises ValueError unless the route is a borrow ... repay sequence indexed from 1."""
    if len(route) < 2:
        raise ValueError("route needs at least a borrow and a repay step")
    for position, step in enumerate(route, start=1):
        if step.index != position:
            raise ValueError(f"route step {step.index} found at position {position}")
    kinds = [step.kind for step in route]
    if kinds.count(RouteStepKind.BORROW) != 1 or kinds.count(RouteStepKind.REPAY) != 1:
        raise ValueError("route must contain exactly one BORROW and one REPAY")
    if kinds[0] is not RouteStepKind.BORROW:
        raise ValueError("BORROW must be the first route step")
    if kinds[-1] is not RouteStepKind.REPAY:
        raise ValueError("REPAY must be the last route step")


@dataclass(frozen=True)
class Opportunity:
    """An admitted flash-loan arbitrage candidate. Immutable once created."""
    id: str
    pair_id: str
    base_symbol: str
    quote_symbol: str
    buy_venue: str
    sell_venue: str
    price_usd: float
    liquidity_usd: float
    spread_bps: int
    loan_amount_usd: float
    flash_fee_usd: float
    price_impact_pct: float
    slippage_tolerance_pct: float
    estimated_gas_usd: float
    net_profit_usd: float
    route: Tuple[RouteStep, ...]
    created_at: datetime

    def __post_init__(self):
        if self.spread_bps <= 0:
            raise ValueError("spread_bps must be positive")
        if self.loan_amount_usd <= 0:
            raise ValueError("loan_amount_usd must be positive")
        if self.estimated_gas_usd < 0:
            raise ValueError("estimated_gas_usd must be non-negative")
        validate_route(self.route)

    @property
    def symbol(self) -> str:
        return f"{self.base_symbol}/{self.quote_symbol}"

    @property
    def spread_pct(self) -> float:
        return self.spread_bps / 100

    def path(self) -> list[str]:
        return [str(step) for step in self.route]


class RiskLevel(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'


@dataclass(frozen=True)
class RiskVerdict:
    risk_level: RiskLevel
    score: int
    reason: str
