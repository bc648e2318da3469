"""Health and debug snapshots for the scheduler."""
from typing import TYPE_CHECKING

from loguru import logger

from ..models import ScheduledAction
from ..types import DebugSnapshot, EntryInfo, HealthStatus

if TYPE_CHECKING:
    from .service import SchedulerService

logger = logger.bind(module="scheduler.health")


class HealthReporter:
    """Builds health and debug views from the service and its registry."""

    def __init__(self, service: "SchedulerService"):
        self.service = service

    async def _actions(self) -> list[ScheduledAction] | None:
        try:
            return await self.service.store.list()
        except Exception as e:
            logger.warning(f"Health check could not read the store: {e}")
            return None

    async def health(self) -> HealthStatus:
        """Current operational health.

        Counts come from the store; when it cannot be read, the counts
        cached by the last reconciliation are reported instead.
        """
        state = self.service.state
        actions = await self._actions()
        if actions is None:
            active = state.active_actions
            failed = state.failed_actions
        else:
            active = sum(1 for a in actions if a.is_active)
            failed = sum(1 for a in actions if a.is_exhausted)

        uptime = 0.0
        if state.running and state.started_at:
            uptime = (self.service.deps.clock() - state.started_at).total_seconds()

        return HealthStatus(
            running=state.running,
            is_initialized=state.is_initialized,
            active_schedules=active,
            scheduled_entries=self.service.registry.size(),
            failed_actions=failed,
            uptime=uptime,
            last_initialization=state.last_initialization,
            last_error=state.last_error,
        )

    async def debug(self) -> DebugSnapshot:
        """Dump every live entry, flagging ghosts.

        A ghost is an armed entry whose action is missing, inactive or now
        maps to a different schedule.
        """
        actions = await self._actions()
        by_id = {a.id: a for a in actions} if actions is not None else None

        entries = []
        for entry in self.service.registry.list_active():
            ghost = False
            if by_id is not None:
                action = by_id.get(entry.action_id)
                ghost = (
                    action is None
                    or not action.is_active
                    or action.schedule_id != entry.schedule_id
                )
            entries.append(EntryInfo(
                schedule_id=entry.schedule_id,
                action_id=entry.action_id,
                kind=entry.kind,
                scheduled_instant=entry.scheduled_instant,
                timezone=entry.timezone,
                is_active=entry.is_active,
                has_timeout=entry.timeout_handle is not None,
                has_interval=entry.interval_handle is not None,
                ghost=ghost,
            ))

        snapshot = DebugSnapshot(
            is_initialized=self.service.state.is_initialized,
            registry_size=self.service.registry.size(),
            active_actions=(
                sum(1 for a in actions if a.is_active)
                if actions is not None else self.service.state.active_actions
            ),
            entries=entries,
        )
        if snapshot.ghosts:
            logger.warning(f"{len(snapshot.ghosts)} ghost schedule entries found")
        return snapshot
