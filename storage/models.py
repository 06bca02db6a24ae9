"""Dataclasses representing stored scan ticks and simulated trades."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class ScanTickRecord:
    id: int
    observed_at: datetime
    chain: str
    samples_count: int
    gas_price_gwei: Optional[float]
    candidates_count: int
    admitted_opportunity_id: Optional[str]


@dataclass(slots=True)
class TradeRow:
    id: int
    opportunity_id: str
    chain: str
    pair: str
    buy_venue: str
    sell_venue: str
    resolution: str
    spread_bps: int
    loan_amount_usd: float
    net_profit_usd: float
    realized_cost_usd: float
    tx_reference: str
    resolved_at: datetime
    risk_level: Optional[str]
    risk_score: Optional[int]


@dataclass(slots=True)
class TradeSummary:
    trade_count: int
    auto_executed: int
    user_executed: int
    total_profit_usd: float
    total_cost_usd: float
