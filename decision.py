"""Single-slot decision window between detection and (simulated) execution.

The machine owns at most one PendingDecision. All transitions are plain
synchronous methods, so on a single asyncio loop a check-then-write never
interleaves with another writer. The countdown clock and the optional risk
scoring call are separate tasks that only ever go through those methods.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from analysis.models import Opportunity, RiskVerdict
from constants import DEFAULT_COUNTDOWN_SECONDS, DEFAULT_RISK_TIMEOUT_SECONDS, DEFAULT_TICK_SECONDS
from errors import InvariantViolation
from events import EventBus, EventKind
from ledger import ExecutionLedger, Resolution, TradeRecord


class RiskScorer(Protocol):
    async def score_opportunity(self, opportunity: Opportunity) -> Optional[RiskVerdict]:
        ...


class DecisionState(str, Enum):
    EMPTY = 'EMPTY'
    PENDING = 'PENDING'
    EXPIRED = 'EXPIRED'


@dataclass
class PendingDecision:
    opportunity: Opportunity
    remaining_seconds: float
    auto_executable: bool
    risk_verdict: Optional[RiskVerdict] = None
    expired: bool = False
    admitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PendingOpportunityMachine:
    def __init__(
        self,
        ledger: ExecutionLedger,
        bus: EventBus,
        *,
        countdown_seconds: float = DEFAULT_COUNTDOWN_SECONDS,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        auto_approve: bool = False,
        risk_scorer: Optional[RiskScorer] = None,
        risk_timeout_seconds: float = DEFAULT_RISK_TIMEOUT_SECONDS,
    ) -> None:
        if countdown_seconds <= 0 or tick_seconds <= 0:
            raise ValueError("countdown and tick must be positive")
        self.ledger = ledger
        self.bus = bus
        self.countdown_seconds = countdown_seconds
        self.tick_seconds = tick_seconds
        # Read once per admission; toggling never touches a pending decision.
        self.auto_approve = auto_approve
        self.risk_scorer = risk_scorer
        self.risk_timeout_seconds = risk_timeout_seconds
        self.last_resolution: Optional[Resolution] = None
        self._pending: Optional[PendingDecision] = None
        self._risk_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> Optional[PendingDecision]:
        return self._pending

    @property
    def state(self) -> DecisionState:
        if self._pending is None:
            return DecisionState.EMPTY
        if self._pending.expired:
            return DecisionState.EXPIRED
        return DecisionState.PENDING

    # --- Transitions ---

    def admit(self, opportunity: Opportunity) -> bool:
        """EMPTY -> PENDING. Returns False and drops the opportunity when the slot is taken."""
        if self._pending is not None:
            held = self._pending.opportunity
            self.bus.emit(
                EventKind.OPPORTUNITY_DROPPED,
                f"Dropped {opportunity.symbol} ({opportunity.id}): decision {held.id} for {held.symbol} still pending",
                data=opportunity,
            )
            return False

        decision = PendingDecision(
            opportunity=opportunity,
            remaining_seconds=self.countdown_seconds,
            auto_executable=self.auto_approve,
        )
        self._install(decision)

        if decision.auto_executable:
            message = f"OPPORTUNITY DETECTED: {opportunity.symbol} - Auto-approving in {self.countdown_seconds:.1f}s..."
        else:
            message = f"OPPORTUNITY DETECTED: {opportunity.symbol} - Waiting for user confirmation..."
        self.bus.emit(EventKind.OPPORTUNITY_FOUND, message, data=opportunity)

        if self.risk_scorer is not None:
            self._start_risk_scoring(decision)
        return True

    def tick(self) -> Optional[TradeRecord]:
        """Advances the countdown by one tick; auto-executes or stalls at zero."""
        decision = self._pending
        if decision is None or decision.expired:
            return None

        remaining = round(decision.remaining_seconds - self.tick_seconds, 9)
        if remaining > 0:
            decision.remaining_seconds = remaining
            return None

        decision.remaining_seconds = 0.0
        if decision.auto_executable:
            return self._resolve(decision, Resolution.AUTO_EXECUTED)

        decision.expired = True
        opportunity = decision.opportunity
        self.bus.emit(
            EventKind.DECISION_EXPIRED,
            f"Decision window closed for {opportunity.symbol} ({opportunity.id}) - awaiting execute or cancel",
            data=opportunity,
        )
        return None

    def execute(self, opportunity_id: Optional[str] = None) -> Optional[TradeRecord]:
        """User execution at any remaining time, including after expiry."""
        decision = self._target(opportunity_id)
        if decision is None:
            return None
        return self._resolve(decision, Resolution.USER_EXECUTED)

    def cancel(self, opportunity_id: Optional[str] = None) -> bool:
        decision = self._target(opportunity_id)
        if decision is None:
            return False
        self._clear(decision, Resolution.USER_CANCELLED)
        opportunity = decision.opportunity
        self.bus.emit(
            EventKind.DECISION_CANCELLED,
            f"User cancelled execution for {opportunity.symbol} ({opportunity.id})",
            data=opportunity,
        )
        return True

    def attach_risk_verdict(self, opportunity_id: str, verdict: RiskVerdict) -> bool:
        decision = self._pending
        if decision is None or decision.opportunity.id != opportunity_id:
            return False
        decision.risk_verdict = verdict
        self.bus.emit(
            EventKind.RISK_VERDICT,
            f"AI Analysis Completed: Score {verdict.score}/100 ({verdict.risk_level.value}) - {verdict.reason}",
            data=verdict,
        )
        return True

    # --- Clock ---

    async def run_clock(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                self.tick()
            except InvariantViolation as exc:
                self.bus.emit(EventKind.WARNING, f"Countdown step dropped: {exc}")

    async def close(self) -> None:
        task = self._risk_task
        self._risk_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # --- Internals ---

    def _target(self, opportunity_id: Optional[str]) -> Optional[PendingDecision]:
        decision = self._pending
        if decision is None:
            return None
        if opportunity_id is not None and decision.opportunity.id != opportunity_id:
            return None
        return decision

    def _install(self, decision: PendingDecision) -> None:
        if self._pending is not None:
            raise InvariantViolation(
                f"slot already holds {self._pending.opportunity.id}; refusing {decision.opportunity.id}"
            )
        self._pending = decision

    def _clear(self, decision: PendingDecision, resolution: Resolution) -> None:
        if self._pending is not decision:
            raise InvariantViolation(f"{decision.opportunity.id} is no longer the pending decision")
        self._pending = None
        self.last_resolution = resolution
        task = self._risk_task
        self._risk_task = None
        if task is not None and not task.done():
            task.cancel()

    def _resolve(self, decision: PendingDecision, resolution: Resolution) -> TradeRecord:
        self._clear(decision, resolution)
        record = self.ledger.resolve(decision, resolution)
        opportunity = record.opportunity
        source = "AUTO" if resolution is Resolution.AUTO_EXECUTED else "USER"
        self.bus.emit(
            EventKind.DECISION_RESOLVED,
            f"EXECUTED ({source}): {opportunity.symbol} | Profit: ${record.realized_profit_usd:.2f} | "
            f"Gas: ${opportunity.estimated_gas_usd:.2f} | Tx: {record.tx_reference}",
            data=record,
        )
        return record

    def _start_risk_scoring(self, decision: PendingDecision) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.bus.emit(EventKind.WARNING, "No running event loop; skipping AI risk analysis")
            return
        self._risk_task = loop.create_task(self._score_risk(decision))

    async def _score_risk(self, decision: PendingDecision) -> None:
        opportunity = decision.opportunity
        try:
            verdict = await asyncio.wait_for(
                self.risk_scorer.score_opportunity(opportunity),
                timeout=self.risk_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.bus.emit(
                EventKind.WARNING,
                f"AI Analysis timed out after {self.risk_timeout_seconds:.0f}s for {opportunity.symbol}; no verdict",
            )
            return
        except Exception as exc:
            self.bus.emit(EventKind.WARNING, f"AI Analysis Failed for {opportunity.symbol}: {exc}")
            return

        if verdict is None:
            self.bus.emit(EventKind.WARNING, f"AI Analysis unavailable for {opportunity.symbol}; no verdict")
            return
        # A verdict for an already resolved decision is discarded.
        self.attach_risk_verdict(opportunity.id, verdict)
