"""Core operations for the scheduler service.

Contains the store-level business logic for action management. Callers
hold the service lock and reconcile afterwards.
"""
from datetime import datetime

from loguru import logger

from ..models import ActionCreate, ActionPatch, ScheduledAction
from ..schedule import DAY_SECONDS, compute_next_run, from_epoch, to_epoch
from ..types import ExecutionResult, RemoveResult
from .store import ActionStore

logger = logger.bind(module="scheduler.ops")


async def add_action(store: ActionStore, draft: ActionCreate) -> ScheduledAction:
    """Add a new scheduled action.

    Raises:
        ActionValidationError: If the draft is invalid
    """
    action = await store.create(draft)
    logger.info(f"Added action {action.id}: {action.describe()}")
    return action


async def update_action(
    store: ActionStore,
    action_id: str,
    draft: ActionCreate,
) -> ScheduledAction | None:
    """Replace an existing action.

    Returns:
        Updated action, or None if not found
    """
    action = await store.update(action_id, draft)
    if action:
        logger.info(f"Updated action {action.id}: {action.describe()}")
    return action


async def patch_action(
    store: ActionStore,
    action_id: str,
    patch: ActionPatch,
) -> ScheduledAction | None:
    """Partially update an action.

    Returns:
        Patched action, or None if not found
    """
    action = await store.patch(action_id, patch)
    if action:
        logger.info(f"Patched action {action.id}")
    return action


async def remove_action(store: ActionStore, action_id: str) -> RemoveResult:
    """Remove an action.

    Returns:
        Remove result
    """
    removed = await store.delete(action_id)
    if not removed:
        return RemoveResult(action_id=action_id, removed=False, reason="Action not found")

    logger.info(f"Removed action {action_id}")
    return RemoveResult(action_id=action_id, removed=True)


async def pause_action(store: ActionStore, action_id: str) -> ScheduledAction | None:
    """Pause an action.

    Returns:
        Updated action, or None if not found
    """
    action = await store.patch(action_id, ActionPatch(is_active=False))
    if action:
        logger.info(f"Paused action {action_id}")
    return action


async def resume_action(
    store: ActionStore,
    action_id: str,
    now: datetime,
) -> ScheduledAction | None:
    """Resume a paused action and refresh its next run.

    Returns:
        Updated action, or None if not found
    """
    action = await store.get(action_id)
    if not action:
        return None

    next_run = compute_next_run(
        action.is_daily, action.time, action.date, action.timezone, now
    )
    action = await store.patch(action_id, ActionPatch(is_active=True, next_run=next_run))
    if action:
        logger.info(f"Resumed action {action_id}")
    return action


async def record_result(
    store: ActionStore,
    action: ScheduledAction,
    result: ExecutionResult,
    now: datetime,
    manual: bool = False,
) -> ScheduledAction:
    """Persist the outcome of one execution.

    Success stamps ``lastRun``, resets the retry counter and, for a timed
    daily firing, moves ``nextRun`` one day on. Failure only bumps the
    retry counter, capped at ``maxRetries``.

    Returns:
        The persisted action (the input when the row has vanished)
    """
    if result.success:
        run_s = to_epoch(now)
        patch = ActionPatch(last_run=run_s, retry_count=0)
        if action.is_daily and not manual:
            patch.next_run = run_s + DAY_SECONDS
    else:
        patch = ActionPatch(retry_count=min(action.retry_count + 1, action.max_retries))

    updated = await store.patch(action.id, patch)
    if updated is None:
        logger.warning(f"Action {action.id} was deleted before its result was saved")
        return action

    if not result.success and updated.is_exhausted:
        logger.warning(
            f"Action {action.id} has failed {updated.retry_count} times "
            f"(max {updated.max_retries})"
        )
    return updated


async def find_missed_runs(store: ActionStore, now: datetime) -> list[ScheduledAction]:
    """Find active actions whose cached next run passed while the process was down."""
    now_s = to_epoch(now)
    missed = []
    for action in await store.list(active_only=True):
        if action.next_run is None or action.next_run >= now_s:
            continue
        # a one-time action keeps its nextRun after firing
        if action.last_run is not None and action.last_run >= action.next_run:
            continue
        missed.append(action)
        logger.warning(
            f"Action {action.id} missed its run at "
            f"{from_epoch(action.next_run).isoformat()} ({action.describe()}); "
            f"not backfilled"
        )
    return missed
