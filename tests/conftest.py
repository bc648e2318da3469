"""Shared test fixtures and fakes."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from media_scheduler.scheduler import (
    ActionCreate,
    ActionExecutor,
    ActionStore,
    ActionType,
    CalendarEvent,
    MediaResult,
    SchedulerEvent,
    SchedulerService,
)
from media_scheduler.scheduler.schedule import to_epoch

START = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Time
# =============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeHandle:
    def __init__(self, when: datetime, callback: Callable[[], Any], seq: int):
        self.when = when
        self.callback = callback
        self.seq = seq
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimerLoop:
    """Stands in for the event loop's ``call_later`` under a manual clock."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self._handles: list[FakeHandle] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(
            self.clock() + timedelta(seconds=delay),
            lambda: callback(*args),
            self._seq,
        )
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self._handles if not h.cancelled]

    async def advance(
        self,
        seconds: float,
        settle: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Move the clock forward, running due callbacks in order.

        The clock is set to each callback's due time before it runs; ``settle``
        is awaited after every callback.
        """
        target = self.clock() + timedelta(seconds=seconds)
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            if handle.when > self.clock.now:
                self.clock.now = handle.when
            handle.callback()
            if settle is not None:
                await settle()
        self.clock.now = target


# =============================================================================
# Boundaries
# =============================================================================


class FakeMediaController:
    """Records media commands and answers with a configurable outcome."""

    def __init__(self):
        self.calls: list[tuple[ActionType, str | None]] = []
        self.fail = False
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def control_media(self, action_type: ActionType, target: str | None) -> MediaResult:
        self.calls.append((action_type, target))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.fail:
            return MediaResult(False, "Player unavailable")
        return MediaResult(True, f"{action_type.value} {target or ''}".strip())


class FakeCalendar:
    def __init__(self):
        self.events: list[CalendarEvent] = []

    def add(self, summary: str, start: datetime, end: datetime) -> CalendarEvent:
        event = CalendarEvent(summary=summary, start=to_epoch(start), end=to_epoch(end))
        self.events.append(event)
        return event

    async def current_events(self, at: datetime) -> list[CalendarEvent]:
        return [e for e in self.events if e.contains(to_epoch(at))]


# =============================================================================
# Factories
# =============================================================================


def daily(time: str, action_type: str = "play", **kwargs: Any) -> ActionCreate:
    """Daily action draft."""
    kwargs.setdefault("event_name", "Morning Aarti" if action_type == "play" else None)
    return ActionCreate(action_type=action_type, time=time, is_daily=True, **kwargs)


def once(date: datetime, action_type: str = "play", **kwargs: Any) -> ActionCreate:
    """One-time action draft."""
    kwargs.setdefault("event_name", "Evening Katha" if action_type == "play" else None)
    return ActionCreate(
        action_type=action_type,
        time=date.strftime("%H:%M:%S"),
        is_daily=False,
        date=date,
        **kwargs,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timer_loop(clock: ManualClock) -> FakeTimerLoop:
    return FakeTimerLoop(clock)


@pytest.fixture
def media() -> FakeMediaController:
    return FakeMediaController()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "db.sqlite"


@pytest.fixture
async def store(db_path: Path, clock: ManualClock):
    action_store = ActionStore(db_path, clock=clock)
    await action_store.initialize()
    yield action_store
    await action_store.close()


@pytest.fixture
def executor(media: FakeMediaController, calendar: FakeCalendar, clock: ManualClock) -> ActionExecutor:
    return ActionExecutor(media=media, calendar=calendar, clock=clock)


@pytest.fixture
async def scheduler(
    store: ActionStore,
    executor: ActionExecutor,
    clock: ManualClock,
    timer_loop: FakeTimerLoop,
):
    service = SchedulerService(executor=executor, store=store, clock=clock, timer_loop=timer_loop)
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
def events(scheduler: SchedulerService) -> list[SchedulerEvent]:
    """Every broadcast event, in order."""
    received: list[SchedulerEvent] = []
    scheduler.on_event(received.append)
    return received
