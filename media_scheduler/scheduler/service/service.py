"""Main Scheduler Service class.

This is the unified entry point for all scheduler operations. Every
mutation writes the store and then rebuilds the live timer set, under one
lock shared with the fire path.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from ..models import ActionCreate, ActionPatch, ScheduledAction
from ..schedule import utcnow
from ..types import DebugSnapshot, ExecutionResult, HealthStatus, RemoveResult
from . import ops
from . import timer
from .events import EventEmitter, EventHandler
from .health import HealthReporter
from .registry import ScheduleEntry, ScheduleRegistry
from .state import ActionRunner, SchedulerServiceDeps, SchedulerServiceState
from .store import ActionStore

logger = logger.bind(module="scheduler.service")


class SchedulerService:
    """Scheduler service for time-triggered media-control actions.

    Keeps one live timer per daily action and per future one-time action,
    executes each due occurrence at most once, persists the outcome and
    broadcasts it.
    """

    def __init__(
        self,
        executor: ActionRunner,
        store: ActionStore | None = None,
        db_path: str | Path = "~/.media-scheduler/db.sqlite",
        clock: Callable[[], datetime] = utcnow,
        timer_loop: Any = None,
        housekeeping_interval: float = timer.HOUSEKEEPING_INTERVAL_SECONDS,
    ):
        """Initialize scheduler service.

        Args:
            executor: Action executor (implements execute(action) -> ExecutionResult)
            store: Action store; built from ``db_path`` when omitted
            db_path: Path to SQLite database for persistence
            clock: Source of the current instant
            timer_loop: Object providing ``call_later``; defaults to the running loop
            housekeeping_interval: Seconds between stale-entry sweeps
        """
        if store is None:
            store = ActionStore(Path(db_path).expanduser(), clock=clock)

        self.store = store
        self.events = EventEmitter()
        self.deps = SchedulerServiceDeps(executor=executor, clock=clock, timer_loop=timer_loop)
        self.state = SchedulerServiceState()
        self.registry = ScheduleRegistry(clock=clock, loop=timer_loop)
        self.reporter = HealthReporter(self)
        self.housekeeping_interval = housekeeping_interval

    # ============== Lifecycle ==============

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.state.running:
            logger.warning("Scheduler already running")
            return

        await self.store.initialize()

        self.state.running = True
        self.state.started_at = self.deps.clock()

        missed = await ops.find_missed_runs(self.store, self.state.started_at)
        if missed:
            logger.info(f"{len(missed)} actions missed a run while the scheduler was down")

        await self.reconcile()

        self.state.housekeeping_task = asyncio.create_task(
            timer.housekeeping_loop(self, self.housekeeping_interval)
        )
        logger.info("Scheduler service started")

    async def stop(self) -> None:
        """Stop the scheduler service gracefully."""
        if not self.state.running:
            return

        self.state.running = False

        if self.state.housekeeping_task:
            self.state.housekeeping_task.cancel()
            try:
                await self.state.housekeeping_task
            except asyncio.CancelledError:
                pass

        self.registry.clear()
        await self.wait_idle()
        await self.events.drain()
        await self.store.close()

        self.state.reset()
        logger.info("Scheduler service stopped")

    async def reconcile(self) -> bool:
        """Rebuild every live timer from the store.

        Returns:
            True on success; False if the store could not be read, in which
            case the previous timers are kept
        """
        return await timer.reconcile(self)

    async def reinitialize(self) -> bool:
        """Force a fresh reconciliation.

        The service reports itself uninitialized until the rebuild succeeds;
        on failure the previous timers stay armed and ``isInitialized``
        stays False.
        """
        async with self.state.lock:
            self.state.is_initialized = False
            logger.info("Reinitializing schedules")
            return await timer.reconcile_locked(self)

    async def _reconcile_if_running(self) -> None:
        if self.state.running:
            await timer.reconcile_locked(self)

    def dispatch_fire(self, entry: ScheduleEntry, instant: datetime) -> None:
        """Timer callback for an armed entry."""
        timer.dispatch_fire(self, entry, instant)

    async def wait_idle(self) -> None:
        """Wait until no fire or manual-run task is in flight."""
        while self.state.fire_tasks:
            await asyncio.gather(*list(self.state.fire_tasks), return_exceptions=True)

    # ============== Action Management ==============

    async def list(self) -> list[ScheduledAction]:
        """List all actions."""
        return await self.store.list()

    async def get(self, action_id: str) -> ScheduledAction | None:
        """Get an action by ID."""
        return await self.store.get(action_id)

    async def create(self, draft: ActionCreate) -> ScheduledAction:
        """Create an action and reconcile.

        Raises:
            ActionValidationError: If the draft is invalid
        """
        async with self.state.lock:
            action = await ops.add_action(self.store, draft)
            await self._reconcile_if_running()
        return action

    async def schedule(self, draft: ActionCreate) -> ScheduledAction:
        """Add one action to the schedule."""
        return await self.create(draft)

    async def update(self, action_id: str, draft: ActionCreate) -> ScheduledAction | None:
        """Replace an action and reconcile.

        Returns:
            Updated action, or None if not found
        """
        async with self.state.lock:
            action = await ops.update_action(self.store, action_id, draft)
            if action:
                await self._reconcile_if_running()
        return action

    async def patch(self, action_id: str, patch: ActionPatch) -> ScheduledAction | None:
        """Partially update an action and reconcile.

        Returns:
            Patched action, or None if not found
        """
        async with self.state.lock:
            action = await ops.patch_action(self.store, action_id, patch)
            if action:
                await self._reconcile_if_running()
        return action

    async def remove(self, action_id: str) -> RemoveResult:
        """Delete an action; its timer is gone before this returns."""
        async with self.state.lock:
            result = await ops.remove_action(self.store, action_id)
            if result.removed:
                await self._reconcile_if_running()
        return result

    async def pause(self, action_id: str) -> ScheduledAction | None:
        """Deactivate an action and reconcile."""
        async with self.state.lock:
            action = await ops.pause_action(self.store, action_id)
            if action:
                await self._reconcile_if_running()
        return action

    async def resume(self, action_id: str) -> ScheduledAction | None:
        """Reactivate an action and reconcile."""
        async with self.state.lock:
            action = await ops.resume_action(self.store, action_id, self.deps.clock())
            if action:
                await self._reconcile_if_running()
        return action

    async def run(self, action_id: str) -> ExecutionResult | None:
        """Execute an action immediately, outside its schedule.

        Returns:
            Execution result, or None if not found
        """
        async with self.state.lock:
            action = await self.store.get(action_id)
            if not action:
                return None
            logger.info(f"Manual execution of action {action_id}")
            return await timer.run_action(self, action, manual=True)

    # ============== Monitoring ==============

    async def health(self) -> HealthStatus:
        return await self.reporter.health()

    async def debug(self) -> DebugSnapshot:
        return await self.reporter.debug()

    # ============== Event Handling ==============

    def on_event(self, handler: EventHandler) -> None:
        """Register an event handler.

        Args:
            handler: Function (or coroutine function) to call for each event
        """
        self.events.add_handler(handler)

    def off_event(self, handler: EventHandler) -> None:
        """Unregister an event handler."""
        self.events.remove_handler(handler)
