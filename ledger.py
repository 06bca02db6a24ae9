"""Trade ledger: bounded history, running totals and the virtual wallet."""
from __future__ import annotations

import logging
import secrets
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from analysis.models import Opportunity, RiskVerdict
from constants import DEFAULT_HISTORY_CAPACITY, DEFAULT_NATIVE_TOKEN_PRICE_USD, DEFAULT_VIRTUAL_BALANCE
from errors import InvariantViolation

if TYPE_CHECKING:
    from decision import PendingDecision


class Resolution(str, Enum):
    AUTO_EXECUTED = 'AUTO_EXECUTED'
    USER_EXECUTED = 'USER_EXECUTED'
    USER_CANCELLED = 'USER_CANCELLED'
    EXPIRED_NO_ACTION = 'EXPIRED_NO_ACTION'

    @property
    def is_execution(self) -> bool:
        return self in (Resolution.AUTO_EXECUTED, Resolution.USER_EXECUTED)


@dataclass(frozen=True)
class TradeRecord:
    opportunity: Opportunity
    resolution: Resolution
    realized_profit_usd: float
    realized_cost_usd: float
    resolved_at: datetime
    tx_reference: str
    risk_verdict: Optional[RiskVerdict] = None


@dataclass
class RunningTotals:
    cumulative_profit_usd: float = 0.0
    cumulative_cost_usd: float = 0.0
    trade_count: int = 0


@dataclass
class VirtualWallet:
    """Paper balance in native-token units, credited with realized profit."""
    balance: float = DEFAULT_VIRTUAL_BALANCE
    token_price_usd: float = DEFAULT_NATIVE_TOKEN_PRICE_USD
    symbol: str = 'METIS'

    def apply(self, record: TradeRecord) -> float:
        delta = record.realized_profit_usd / self.token_price_usd
        self.balance += delta
        return delta


class ExecutionLedger:
    """Sole owner of trade history and running totals.

    resolve() is synchronous so the append and the totals update happen in
    one step on the event loop.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY, wallet: Optional[VirtualWallet] = None) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self.capacity = capacity
        self.wallet = wallet
        self.totals = RunningTotals()
        self._history: deque[TradeRecord] = deque(maxlen=capacity)
        self.logger = logging.getLogger(__name__)

    @property
    def history(self) -> list[TradeRecord]:
        """Most recent first."""
        return list(reversed(self._history))

    def resolve(self, decision: PendingDecision, resolution: Resolution, now: Optional[datetime] = None) -> TradeRecord:
        if not resolution.is_execution:
            raise InvariantViolation(f"{resolution.value} does not produce a trade")

        opportunity = decision.opportunity
        record = TradeRecord(
            opportunity=opportunity,
            resolution=resolution,
            realized_profit_usd=opportunity.net_profit_usd,
            realized_cost_usd=opportunity.estimated_gas_usd + opportunity.flash_fee_usd,
            resolved_at=now or datetime.now(timezone.utc),
            tx_reference="0x" + secrets.token_hex(8),
            risk_verdict=decision.risk_verdict,
        )

        self._history.append(record)
        self.totals.cumulative_profit_usd += record.realized_profit_usd
        self.totals.cumulative_cost_usd += record.realized_cost_usd
        self.totals.trade_count += 1

        if self.wallet is not None:
            delta = self.wallet.apply(record)
            self.logger.debug(
                "[Ledger] %s %s | Profit: +%.4f %s | Balance: %.4f %s",
                resolution.value,
                opportunity.symbol,
                delta,
                self.wallet.symbol,
                self.wallet.balance,
                self.wallet.symbol,
            )
        else:
            self.logger.debug(
                "[Ledger] %s %s | Profit: $%.2f | Cost: $%.2f | Tx: %s",
                resolution.value,
                opportunity.symbol,
                record.realized_profit_usd,
                record.realized_cost_usd,
                record.tx_reference,
            )
        return record
