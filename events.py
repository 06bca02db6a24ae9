"""Typed event stream shared by the scanner, the decision machine and their sinks."""
from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from constants import C_BLUE, C_CYAN, C_GREEN, C_RED, C_RESET, C_YELLOW


class EventKind(str, Enum):
    SCAN_TICK = 'SCAN_TICK'
    WARNING = 'WARNING'
    OPPORTUNITY_FOUND = 'OPPORTUNITY_FOUND'
    OPPORTUNITY_DROPPED = 'OPPORTUNITY_DROPPED'
    DECISION_EXPIRED = 'DECISION_EXPIRED'
    DECISION_CANCELLED = 'DECISION_CANCELLED'
    DECISION_RESOLVED = 'DECISION_RESOLVED'
    RISK_VERDICT = 'RISK_VERDICT'


@dataclass(frozen=True)
class Event:
    kind: EventKind
    message: str
    data: Any = None
    emitted_at: Optional[datetime] = None

    def __post_init__(self):
        if self.emitted_at is None:
            object.__setattr__(self, 'emitted_at', datetime.now(timezone.utc))


Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """Fans events out to read-only subscribers.

    Subscribers may be plain or async callables; coroutines are scheduled on
    the running loop. A failing subscriber is reported and never propagates
    into the emitter.
    """

    def __init__(self, keep_recent: int = 100) -> None:
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Future] = set()
        self.recent: deque[Event] = deque(maxlen=keep_recent)

    def subscribe(self, callback: Subscriber) -> Subscriber:
        self._subscribers.append(callback)
        return callback

    def emit(self, kind: EventKind, message: str, data: Any = None) -> Event:
        event = Event(kind=kind, message=message, data=data)
        self.recent.append(event)
        for callback in list(self._subscribers):
            try:
                result = callback(event)
            except Exception as exc:
                print(f"{C_RED}Event subscriber failed on {kind.value}: {exc}{C_RESET}")
                continue
            if inspect.isawaitable(result):
                try:
                    task = asyncio.ensure_future(result, loop=asyncio.get_running_loop())
                except RuntimeError as exc:
                    if inspect.iscoroutine(result):
                        result.close()
                    print(f"{C_RED}Cannot schedule async subscriber for {kind.value}: {exc}{C_RESET}")
                    continue
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
        return event

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            print(f"{C_RED}Async event subscriber failed: {exc}{C_RESET}")

    async def drain(self) -> None:
        """Waits for scheduled async subscribers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_KIND_COLORS = {
    EventKind.SCAN_TICK: '',
    EventKind.WARNING: C_YELLOW,
    EventKind.OPPORTUNITY_FOUND: C_YELLOW,
    EventKind.OPPORTUNITY_DROPPED: C_BLUE,
    EventKind.DECISION_EXPIRED: C_RED,
    EventKind.DECISION_CANCELLED: C_YELLOW,
    EventKind.DECISION_RESOLVED: C_GREEN,
    EventKind.RISK_VERDICT: C_CYAN,
}


class ConsoleSink:
    """Prints every event as a timestamped, colored log line."""

    def __init__(self, printer: Optional[Callable[[str], None]] = None):
        self._print = printer or print

    def __call__(self, event: Event) -> None:
        timestamp = event.emitted_at.astimezone().strftime('%H:%M:%S')
        color = _KIND_COLORS.get(event.kind, '')
        reset = C_RESET if color else ''
        self._print(f"{color}[{timestamp}] {event.message}{reset}")
