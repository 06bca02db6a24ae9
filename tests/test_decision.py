import asyncio

import pytest

from analysis.models import RiskLevel, RiskVerdict
from decision import DecisionState, PendingOpportunityMachine
from events import EventBus, EventKind
from ledger import ExecutionLedger, Resolution


def kinds(bus, kind):
    return [event for event in bus.recent if event.kind is kind]


def make_machine(auto_approve=False, risk_scorer=None, countdown_seconds=3.0, tick_seconds=0.1, **kwargs):
    bus = EventBus()
    ledger = ExecutionLedger(capacity=10)
    machine = PendingOpportunityMachine(
        ledger,
        bus,
        countdown_seconds=countdown_seconds,
        tick_seconds=tick_seconds,
        auto_approve=auto_approve,
        risk_scorer=risk_scorer,
        **kwargs,
    )
    return machine, ledger, bus


def test_auto_executes_exactly_once_on_the_thirtieth_tick(make_opportunity):
    machine, ledger, bus = make_machine(auto_approve=True)
    assert machine.admit(make_opportunity())

    for _ in range(29):
        assert machine.tick() is None
    assert machine.state is DecisionState.PENDING
    assert machine.pending.remaining_seconds == pytest.approx(0.1)

    record = machine.tick()

    assert record is not None
    assert record.resolution is Resolution.AUTO_EXECUTED
    assert machine.state is DecisionState.EMPTY
    for _ in range(50):
        assert machine.tick() is None
    assert ledger.totals.trade_count == 1
    assert len(kinds(bus, EventKind.DECISION_RESOLVED)) == 1


def test_manual_decision_stalls_at_zero_without_a_trade(make_opportunity):
    machine, ledger, bus = make_machine(auto_approve=False)
    machine.admit(make_opportunity())

    for _ in range(200):
        machine.tick()

    assert machine.state is DecisionState.EXPIRED
    assert machine.pending.remaining_seconds == 0.0
    assert machine.pending.expired
    assert ledger.totals.trade_count == 0
    assert len(kinds(bus, EventKind.DECISION_EXPIRED)) == 1


def test_stalled_decision_blocks_new_admissions_until_resolved(make_opportunity):
    machine, ledger, bus = make_machine()
    first = make_opportunity()
    machine.admit(first)
    for _ in range(30):
        machine.tick()

    assert not machine.admit(make_opportunity())

    record = machine.execute()
    assert record.resolution is Resolution.USER_EXECUTED
    assert record.opportunity is first
    assert machine.admit(make_opportunity())


def test_auto_flag_is_latched_at_admission(make_opportunity):
    machine, ledger, _ = make_machine(auto_approve=False)
    machine.admit(make_opportunity())
    machine.auto_approve = True
    for _ in range(30):
        machine.tick()
    assert machine.state is DecisionState.EXPIRED
    assert ledger.totals.trade_count == 0
    machine.cancel()

    machine.admit(make_opportunity())
    machine.auto_approve = False
    results = [machine.tick() for _ in range(30)]
    assert results[-1].resolution is Resolution.AUTO_EXECUTED
    assert ledger.totals.trade_count == 1


def test_user_execute_before_countdown_ends(make_opportunity):
    machine, ledger, bus = make_machine(auto_approve=True)
    opp = make_opportunity()
    machine.admit(opp)
    for _ in range(5):
        machine.tick()

    record = machine.execute(opp.id)

    assert record.resolution is Resolution.USER_EXECUTED
    assert record.realized_profit_usd == 70.0
    assert record.realized_cost_usd == pytest.approx(5.0)
    assert machine.last_resolution is Resolution.USER_EXECUTED
    assert all(machine.tick() is None for _ in range(40))
    assert ledger.totals.trade_count == 1


def test_cancel_clears_the_slot_without_a_trade(make_opportunity):
    machine, ledger, bus = make_machine(auto_approve=True)
    opp = make_opportunity()
    machine.admit(opp)

    assert machine.cancel(opp.id)

    assert machine.state is DecisionState.EMPTY
    assert machine.last_resolution is Resolution.USER_CANCELLED
    assert ledger.totals.trade_count == 0
    assert kinds(bus, EventKind.DECISION_CANCELLED)[0].data is opp
    assert all(machine.tick() is None for _ in range(40))
    assert ledger.totals.trade_count == 0


def test_commands_for_other_or_resolved_ids_are_no_ops(make_opportunity):
    machine, ledger, _ = make_machine()
    first = make_opportunity()
    machine.admit(first)

    assert machine.execute("not-it") is None
    assert not machine.cancel("not-it")
    assert machine.pending.opportunity is first

    machine.cancel(first.id)
    assert machine.execute(first.id) is None
    assert not machine.cancel(first.id)
    assert machine.execute() is None
    assert ledger.totals.trade_count == 0


def test_burst_of_admissions_keeps_a_single_slot(make_opportunity):
    machine, _, bus = make_machine()
    opportunities = [make_opportunity() for _ in range(100)]

    accepted = [machine.admit(opp) for opp in opportunities]

    assert accepted.count(True) == 1
    assert machine.pending.opportunity is opportunities[0]
    assert len(kinds(bus, EventKind.OPPORTUNITY_DROPPED)) == 99
    assert len(kinds(bus, EventKind.OPPORTUNITY_FOUND)) == 1


def test_admission_message_reflects_mode(make_opportunity):
    machine, _, bus = make_machine(auto_approve=True)
    machine.admit(make_opportunity())
    assert "Auto-approving in 3.0s" in kinds(bus, EventKind.OPPORTUNITY_FOUND)[0].message


def test_invalid_timing_is_rejected():
    with pytest.raises(ValueError):
        make_machine(tick_seconds=0)


def test_admit_without_running_loop_skips_risk_scoring(make_opportunity):
    scorer = FakeScorer(RiskVerdict(RiskLevel.LOW, 90, "fine"))
    machine, _, bus = make_machine(risk_scorer=scorer)

    assert machine.admit(make_opportunity())
    assert scorer.calls == 0
    assert len(kinds(bus, EventKind.WARNING)) == 1


class FakeScorer:
    def __init__(self, verdict=None, delay=0.0, error=None):
        self.verdict = verdict
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def score_opportunity(self, opportunity):
        self.calls += 1
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return self.verdict


@pytest.mark.asyncio
async def test_risk_verdict_is_attached_to_the_pending_decision(make_opportunity):
    verdict = RiskVerdict(RiskLevel.MEDIUM, 61, "Thin sell side.")
    machine, _, bus = make_machine(risk_scorer=FakeScorer(verdict))
    machine.admit(make_opportunity())

    await asyncio.sleep(0.05)

    assert machine.pending.risk_verdict == verdict
    assert kinds(bus, EventKind.RISK_VERDICT)[0].data == verdict


@pytest.mark.asyncio
async def test_risk_timeout_leaves_no_verdict(make_opportunity):
    scorer = FakeScorer(RiskVerdict(RiskLevel.LOW, 90, "late"), delay=1.0)
    machine, _, bus = make_machine(risk_scorer=scorer, risk_timeout_seconds=0.02)
    machine.admit(make_opportunity())

    await asyncio.sleep(0.1)

    assert machine.pending.risk_verdict is None
    assert any("timed out" in event.message for event in kinds(bus, EventKind.WARNING))


@pytest.mark.asyncio
async def test_risk_failure_never_blocks_execution(make_opportunity):
    machine, ledger, bus = make_machine(risk_scorer=FakeScorer(error=RuntimeError("boom")))
    machine.admit(make_opportunity())
    await asyncio.sleep(0.02)

    assert machine.pending.risk_verdict is None
    assert any("boom" in event.message for event in kinds(bus, EventKind.WARNING))
    assert machine.execute() is not None
    assert ledger.totals.trade_count == 1


@pytest.mark.asyncio
async def test_resolution_cancels_outstanding_risk_call(make_opportunity):
    scorer = FakeScorer(RiskVerdict(RiskLevel.LOW, 90, "late"), delay=5.0)
    machine, _, bus = make_machine(risk_scorer=scorer)
    machine.admit(make_opportunity())
    await asyncio.sleep(0)

    record = machine.execute()
    await asyncio.sleep(0.01)

    assert record.risk_verdict is None
    assert scorer.cancelled
    assert kinds(bus, EventKind.RISK_VERDICT) == []


@pytest.mark.asyncio
async def test_stale_verdict_is_discarded(make_opportunity):
    machine, _, bus = make_machine()
    first = make_opportunity()
    machine.admit(first)
    machine.cancel()
    machine.admit(make_opportunity())

    attached = machine.attach_risk_verdict(first.id, RiskVerdict(RiskLevel.HIGH, 5, "stale"))

    assert not attached
    assert machine.pending.risk_verdict is None


@pytest.mark.asyncio
async def test_run_clock_drives_auto_execution(make_opportunity):
    machine, ledger, _ = make_machine(auto_approve=True, countdown_seconds=0.05, tick_seconds=0.01)
    machine.admit(make_opportunity())

    clock = asyncio.create_task(machine.run_clock())
    await asyncio.sleep(0.3)
    clock.cancel()
    await asyncio.gather(clock, return_exceptions=True)

    assert ledger.totals.trade_count == 1
    assert machine.state is DecisionState.EMPTY
