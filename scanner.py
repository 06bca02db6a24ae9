# scanner.py
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, List, MutableMapping, Optional

from analysis.detector import Detection, OpportunityDetector
from analysis.models import Opportunity
from config import AppConfig
from constants import C_RED, C_RESET
from decision import PendingOpportunityMachine
from errors import InvariantViolation, TransientNetworkError
from events import Event, EventBus, EventKind
from ledger import TradeRecord
from services.blockscout_client import GasOracle
from services.market_sampler import MarketSampler
from storage import SQLiteRepository


class ArbitrageScanner:
    """Drives sampler -> detector -> decision machine, alongside the countdown clock."""

    def __init__(
        self,
        config: AppConfig,
        sampler: MarketSampler,
        detector: OpportunityDetector,
        machine: PendingOpportunityMachine,
        bus: EventBus,
        gas_oracle: GasOracle,
        repository: Optional[SQLiteRepository] = None,
        status: Optional[MutableMapping[str, Any]] = None,
    ):
        self.config = config
        self.sampler = sampler
        self.detector = detector
        self.machine = machine
        self.bus = bus
        self.gas_oracle = gas_oracle
        self.repository = repository
        # Shared with the Telegram application's bot_data when it runs.
        self.status: MutableMapping[str, Any] = status if status is not None else {}
        self.status.setdefault('last_scan_time', 'Never')
        self.status.setdefault('samples_last_scan', 0)
        self.status.setdefault('last_gas_gwei', None)
        self.status.setdefault('last_error', None)
        self.logger = logging.getLogger(__name__)
        if self.repository is not None:
            self.bus.subscribe(self._persist_trade)

    async def start(self):
        """Runs the market loop and the countdown clock side by side."""
        await asyncio.gather(self._run_main_loop(), self.machine.run_clock())

    async def _run_main_loop(self):
        """The main application loop."""
        while True:
            try:
                await self.run_scan_tick()
            except Exception as e:
                print(f"{C_RED}Error during scan tick: {e}{C_RESET}")
                self.status['last_error'] = str(e)
            await asyncio.sleep(self.config.interval)

    async def run_scan_tick(self) -> Optional[Opportunity]:
        """One poll of the market. Returns the opportunity admitted this tick, if any."""
        try:
            samples = await self.sampler.poll()
        except TransientNetworkError as e:
            self.bus.emit(EventKind.WARNING, f"Market poll failed, retrying next tick: {e}")
            self.status['last_error'] = str(e)
            return None

        self.status['last_scan_time'] = time.strftime('%Y-%m-%d %H:%M:%S')
        self.status['samples_last_scan'] = len(samples)
        self.status['last_error'] = None

        if not samples:
            self.bus.emit(EventKind.SCAN_TICK, f"Scanning {self.config.chain}... no pairs returned from DexScreener")
            await self._record_scan_tick(0, None, 0, None)
            return None

        gas_price = await self.gas_oracle.get_gas_price_in_gwei()
        if gas_price is None:
            self.bus.emit(EventKind.WARNING, "Gas price unavailable; skipping tick")
            await self._record_scan_tick(len(samples), None, 0, None)
            return None
        self.status['last_gas_gwei'] = gas_price

        gas_note = " (too high, holding)" if gas_price > self.detector.max_gas_gwei else ""
        self.bus.emit(
            EventKind.SCAN_TICK,
            f"Scanning {len(samples)} {self.config.chain} pairs | Gas: {gas_price:.1f} gwei{gas_note}",
        )

        candidates = self._evaluate(samples, gas_price)
        admitted: Optional[Opportunity] = None
        if candidates:
            best, superseded = candidates[0], candidates[1:]
            for detection in superseded:
                opp = detection.opportunity
                self.bus.emit(
                    EventKind.OPPORTUNITY_DROPPED,
                    f"Dropped {opp.symbol} ({opp.id}): superseded by {best.opportunity.id} in the same tick",
                    data=opp,
                )
            self.bus.emit(EventKind.SCAN_TICK, best.detail)
            try:
                if self.machine.admit(best.opportunity):
                    admitted = best.opportunity
            except InvariantViolation as e:
                self.bus.emit(EventKind.WARNING, f"Admission skipped: {e}")

        await self._record_scan_tick(
            len(samples),
            gas_price,
            len(candidates),
            admitted.id if admitted else None,
        )
        return admitted

    def _evaluate(self, samples: List, gas_price: float) -> List[Detection]:
        """Runs every sample through the detector; admitted ones sorted by net profit."""
        now = datetime.now(timezone.utc)
        candidates: List[Detection] = []
        for sample in samples:
            detection = self.detector.evaluate(sample, gas_price, now, samples)
            if detection.admitted:
                candidates.append(detection)
            else:
                self.logger.debug("Rejected %s: %s", detection.rejection.value, detection.detail)
        candidates.sort(key=lambda d: d.opportunity.net_profit_usd, reverse=True)
        return candidates

    async def _record_scan_tick(
        self,
        samples_count: int,
        gas_price: Optional[float],
        candidates_count: int,
        admitted_id: Optional[str],
    ) -> None:
        if not self.repository:
            return
        try:
            await self.repository.record_scan_tick(
                chain=self.config.chain,
                samples_count=samples_count,
                gas_price_gwei=gas_price,
                candidates_count=candidates_count,
                admitted_opportunity_id=admitted_id,
            )
        except Exception as exc:
            print(f"{C_RED}Failed to persist scan tick: {exc}{C_RESET}")

    async def _persist_trade(self, event: Event) -> None:
        if event.kind is not EventKind.DECISION_RESOLVED or not isinstance(event.data, TradeRecord):
            return
        try:
            await self.repository.record_trade(event.data, chain=self.config.chain)
        except Exception as exc:
            print(f"{C_RED}Failed to persist trade {event.data.tx_reference}: {exc}{C_RESET}")
