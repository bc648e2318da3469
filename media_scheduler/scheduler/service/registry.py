"""Live timer registry for the scheduler.

Maps schedule ids to armed ``loop.call_later`` handles plus the metadata
needed to fire, inspect and cancel them. The registry is the only owner of
timer handles.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from ..schedule import DAILY_INTERVAL, utcnow
from ..types import ScheduleConflictError, ScheduleKind

logger = logger.bind(module="scheduler.registry")

# One-time entries older than this are dropped by housekeeping
STALE_AFTER_SECONDS = 60 * 60


@dataclass
class ScheduleEntry:
    """One armed occurrence pattern."""
    schedule_id: str
    action_id: str
    kind: ScheduleKind
    scheduled_instant: datetime  # next fire instant, UTC
    timezone: str
    is_active: bool = True
    timeout_handle: Any = None
    interval_handle: Any = None


# Called with the entry and the instant of the occurrence being fired
FireFn = Callable[[ScheduleEntry, datetime], None]


class ScheduleRegistry:
    """In-memory map from schedule id to live timer handles."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        loop: Any = None,
    ):
        """Initialize the registry.

        Args:
            clock: Source of the current instant
            loop: Object providing ``call_later``; defaults to the running loop
        """
        self.clock = clock
        self._loop = loop
        self._entries: dict[str, ScheduleEntry] = {}

    def _timer_loop(self) -> Any:
        return self._loop or asyncio.get_running_loop()

    def _delay(self, instant: datetime) -> float:
        return max(0.0, (instant - self.clock()).total_seconds())

    # ============== Arming ==============

    def arm(self, entry: ScheduleEntry, fire_fn: FireFn) -> ScheduleEntry:
        """Install a one-shot timer for the entry's scheduled instant.

        Raises:
            ScheduleConflictError: If the schedule id is already armed
        """
        if entry.schedule_id in self._entries:
            raise ScheduleConflictError(
                f"Schedule {entry.schedule_id} is already armed "
                f"(action {self._entries[entry.schedule_id].action_id})"
            )

        entry.is_active = True
        instant = entry.scheduled_instant

        def on_timeout() -> None:
            entry.timeout_handle = None
            if entry.is_active:
                fire_fn(entry, instant)

        entry.timeout_handle = self._timer_loop().call_later(self._delay(instant), on_timeout)
        self._entries[entry.schedule_id] = entry

        logger.debug(
            f"Armed {entry.schedule_id} for {instant.isoformat()} "
            f"(in {self._delay(instant):.0f}s)"
        )
        return entry

    def arm_interval(self, schedule_id: str, fire_fn: FireFn) -> bool:
        """Install the fixed 24-hour repeat for a daily entry.

        The first repeat is one interval after the entry's last scheduled
        instant; periods already missed are skipped.

        Returns:
            False if the id is not armed or already repeating
        """
        entry = self._entries.get(schedule_id)
        if entry is None or not entry.is_active or entry.interval_handle is not None:
            return False

        self._schedule_repeat(entry, entry.scheduled_instant + DAILY_INTERVAL, fire_fn)
        logger.debug(f"Daily repeat installed for {schedule_id}")
        return True

    def _schedule_repeat(self, entry: ScheduleEntry, due: datetime, fire_fn: FireFn) -> None:
        now = self.clock()
        while due <= now:
            due += DAILY_INTERVAL

        def on_interval() -> None:
            entry.interval_handle = None
            if not entry.is_active or self._entries.get(entry.schedule_id) is not entry:
                return
            self._schedule_repeat(entry, due + DAILY_INTERVAL, fire_fn)
            fire_fn(entry, due)

        entry.scheduled_instant = due
        entry.interval_handle = self._timer_loop().call_later(self._delay(due), on_interval)

    # ============== Removal ==============

    @staticmethod
    def _cancel(entry: ScheduleEntry) -> None:
        entry.is_active = False
        if entry.timeout_handle is not None:
            entry.timeout_handle.cancel()
            entry.timeout_handle = None
        if entry.interval_handle is not None:
            entry.interval_handle.cancel()
            entry.interval_handle = None

    def clear(self) -> int:
        """Cancel every handle and empty the map.

        Returns:
            Number of entries cleared
        """
        count = len(self._entries)
        for entry in self._entries.values():
            self._cancel(entry)
        self._entries.clear()

        if count:
            logger.debug(f"Cleared {count} schedule entries")
        return count

    def remove(self, schedule_id: str) -> bool:
        """Cancel and drop one entry."""
        entry = self._entries.pop(schedule_id, None)
        if entry is None:
            return False
        self._cancel(entry)
        return True

    def prune_stale(
        self,
        now: datetime | None = None,
        max_age_seconds: float = STALE_AFTER_SECONDS,
    ) -> int:
        """Drop one-time entries whose instant is long past.

        Returns:
            Number of entries pruned
        """
        cutoff = (now or self.clock()) - timedelta(seconds=max_age_seconds)
        stale = [
            sid for sid, entry in self._entries.items()
            if entry.kind == ScheduleKind.ONE_TIME and entry.scheduled_instant < cutoff
        ]
        for sid in stale:
            self.remove(sid)

        if stale:
            logger.info(f"Pruned {len(stale)} stale one-time entries")
        return len(stale)

    # ============== Introspection ==============

    def get(self, schedule_id: str) -> ScheduleEntry | None:
        return self._entries.get(schedule_id)

    def size(self) -> int:
        return len(self._entries)

    def list_active(self) -> list[ScheduleEntry]:
        return [entry for entry in self._entries.values() if entry.is_active]

    def __contains__(self, schedule_id: str) -> bool:
        return schedule_id in self._entries
