"""Timer management for the scheduler.

Handles reconciliation of the live timer set with the store, firing due
entries and the hourly housekeeping loop.
"""
import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from ..models import ScheduledAction
from ..schedule import next_daily_occurrence
from ..types import ExecutionResult, ScheduleConflictError, ScheduleKind
from . import ops
from .events import emit_error, emit_executed
from .registry import ScheduleEntry

if TYPE_CHECKING:
    from .service import SchedulerService

logger = logger.bind(module="scheduler.timer")

HOUSEKEEPING_INTERVAL_SECONDS = 60 * 60


def build_entry(action: ScheduledAction, now: datetime) -> ScheduleEntry | None:
    """Build the schedule entry for an action.

    Returns:
        The entry, or None for a one-time action whose instant has passed
    """
    if action.is_daily:
        instant = next_daily_occurrence(action.time, action.timezone, now)
    else:
        instant = action.scheduled_instant()
        if instant is None or instant < now:
            return None

    return ScheduleEntry(
        schedule_id=action.schedule_id,
        action_id=action.id,
        kind=action.kind,
        scheduled_instant=instant,
        timezone=action.timezone,
    )


async def reconcile(service: "SchedulerService") -> bool:
    """Rebuild the live timer set from the store under the service lock."""
    async with service.state.lock:
        return await reconcile_locked(service)


async def reconcile_locked(service: "SchedulerService") -> bool:
    """Rebuild the live timer set from the store.

    Clears every entry, then arms one entry per active daily action and per
    future one-time action. If the store cannot be read the previous timer
    set is kept.

    Returns:
        True if the registry was rebuilt
    """
    state = service.state
    registry = service.registry

    try:
        actions = await service.store.list()
    except Exception as e:
        state.last_error = f"Reconciliation failed: {e}"
        logger.error(f"{state.last_error}; keeping {registry.size()} existing schedules")
        return False

    registry.clear()
    now = service.deps.clock()

    armed = 0
    skipped = 0
    for action in actions:
        if not action.is_active:
            continue
        try:
            entry = build_entry(action, now)
            if entry is None:
                skipped += 1
                logger.debug(f"Skipping one-time action {action.id}: {action.describe()} is in the past")
                continue
            registry.arm(entry, service.dispatch_fire)
            armed += 1
        except (ScheduleConflictError, ValueError) as e:
            logger.error(f"Could not schedule action {action.id}: {e}")

    state.active_actions = sum(1 for a in actions if a.is_active)
    state.failed_actions = sum(1 for a in actions if a.is_exhausted)
    state.is_initialized = True
    state.last_initialization = now
    state.last_error = None

    logger.info(f"Reconciled {armed} schedules from {len(actions)} actions ({skipped} past one-time skipped)")
    return True


def dispatch_fire(service: "SchedulerService", entry: ScheduleEntry, instant: datetime) -> None:
    """Timer callback: hand the occurrence to a tracked task."""
    task = asyncio.create_task(fire_entry(service, entry, instant))
    track_task(service, task)


def track_task(service: "SchedulerService", task: asyncio.Task) -> None:
    tasks = service.state.fire_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


async def fire_entry(
    service: "SchedulerService",
    entry: ScheduleEntry,
    instant: datetime,
) -> ExecutionResult | None:
    """Run one due occurrence after re-checking it against the store.

    Returns:
        The execution result, or None when the occurrence was skipped
    """
    registry = service.registry
    sid = entry.schedule_id

    async with service.state.lock:
        try:
            current = registry.get(sid) is entry and entry.is_active
            if not current:
                live = registry.get(sid)
                if live is not None and live.scheduled_instant == instant:
                    logger.debug(f"Skipping {sid}: the occurrence was re-armed")
                    return None

            action = await service.store.get(entry.action_id)
            if action is None or not action.is_active:
                logger.warning(f"Skipping {sid}: action {entry.action_id} is missing or inactive")
                if current:
                    registry.remove(sid)
                return None

            if action.schedule_id != sid or (
                entry.kind == ScheduleKind.ONE_TIME and action.scheduled_instant() != instant
            ):
                logger.warning(f"Skipping {sid}: action {action.id} was rescheduled")
                return None

            result = await run_action(service, action)

            if current:
                if entry.kind == ScheduleKind.ONE_TIME:
                    registry.remove(sid)
                elif entry.interval_handle is None:
                    registry.arm_interval(sid, service.dispatch_fire)
            return result

        except Exception as e:
            service.state.last_error = f"Firing {sid} failed: {e}"
            logger.error(service.state.last_error)
            return None


async def run_action(
    service: "SchedulerService",
    action: ScheduledAction,
    manual: bool = False,
) -> ExecutionResult:
    """Execute an action, persist the outcome and broadcast it once."""
    try:
        result = await service.deps.executor.execute(action)
    except Exception as e:
        result = ExecutionResult(False, f"Action execution failed: {e}", service.deps.clock())

    try:
        updated = await ops.record_result(
            service.store, action, result, service.deps.clock(), manual=manual
        )
    except Exception as e:
        logger.error(f"Failed to save result of action {action.id}: {e}")
        emit_error(service.events, action.to_dict(), f"Failed to save execution result: {e}")
        return result

    if result.success:
        emit_executed(service.events, updated.to_dict(), result.to_dict())
    else:
        emit_error(service.events, updated.to_dict(), result.message)
    return result


async def housekeeping_loop(
    service: "SchedulerService",
    interval: float = HOUSEKEEPING_INTERVAL_SECONDS,
) -> None:
    """Periodically drop stale one-time entries from the registry."""
    logger.info("Housekeeping loop started")

    while service.state.running:
        try:
            await asyncio.sleep(interval)
            async with service.state.lock:
                service.registry.prune_stale(service.deps.clock())
        except asyncio.CancelledError:
            logger.info("Housekeeping loop cancelled")
            break
        except Exception as e:
            logger.error(f"Housekeeping error: {e}")

    logger.info("Housekeeping loop stopped")
