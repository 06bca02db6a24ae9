import pytest

from events import ConsoleSink, EventBus, EventKind


def test_emit_reaches_every_subscriber_and_is_recorded():
    bus = EventBus()
    seen_a, seen_b = [], []
    bus.subscribe(seen_a.append)
    bus.subscribe(seen_b.append)

    event = bus.emit(EventKind.SCAN_TICK, "Scanning metis...")

    assert seen_a == [event]
    assert seen_b == [event]
    assert bus.recent[-1] is event
    assert event.emitted_at is not None


def test_failing_subscriber_is_isolated(capsys):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("sink down")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    bus.emit(EventKind.WARNING, "gas unavailable")

    assert len(seen) == 1
    assert "sink down" in capsys.readouterr().out


def test_recent_events_are_bounded():
    bus = EventBus(keep_recent=3)
    for idx in range(5):
        bus.emit(EventKind.SCAN_TICK, f"tick {idx}")
    assert [event.message for event in bus.recent] == ["tick 2", "tick 3", "tick 4"]


@pytest.mark.asyncio
async def test_async_subscribers_are_scheduled_and_drained():
    bus = EventBus()
    received = []

    async def sink(event):
        received.append(event.message)

    bus.subscribe(sink)
    bus.emit(EventKind.OPPORTUNITY_FOUND, "found")
    await bus.drain()

    assert received == ["found"]


@pytest.mark.asyncio
async def test_failing_async_subscriber_is_reported(capsys):
    bus = EventBus()

    async def sink(event):
        raise ValueError("telegram down")

    bus.subscribe(sink)
    bus.emit(EventKind.DECISION_RESOLVED, "done")
    await bus.drain()

    assert "telegram down" in capsys.readouterr().out


def test_async_subscriber_without_loop_is_skipped(capsys):
    bus = EventBus()

    async def sink(event):
        raise AssertionError("should not run")

    bus.subscribe(sink)
    bus.emit(EventKind.SCAN_TICK, "tick")

    assert "Cannot schedule" in capsys.readouterr().out


def test_console_sink_formats_timestamped_line():
    lines = []
    bus = EventBus()
    bus.subscribe(ConsoleSink(printer=lines.append))

    bus.emit(EventKind.SCAN_TICK, "Scanning metis...")

    assert lines[0].endswith("] Scanning metis...")
    assert lines[0].startswith("[")
