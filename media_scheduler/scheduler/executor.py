"""Action executor for running scheduled media-control actions.

Resolves the playlist target of an action and drives the media player
through the media-control boundary. Every failure, including exceptions
and timeouts, is reported as a failed ``ExecutionResult``.
"""
import asyncio
from datetime import datetime
from typing import Callable, Protocol

from loguru import logger

from .models import ScheduledAction
from .schedule import to_epoch, utcnow
from .types import ActionType, CalendarEvent, ExecutionResult, MediaResult

logger = logger.bind(module="scheduler.executor")

NO_ACTIVE_EVENT = "No active event found for the current time"


# ============== Protocol Definitions ==============

class MediaController(Protocol):
    """Protocol for the media player boundary."""

    async def control_media(self, action_type: ActionType, target: str | None) -> MediaResult:
        """Apply a play/pause/stop command to the player."""
        ...


class CalendarLookup(Protocol):
    """Protocol for the calendar boundary."""

    async def current_events(self, at: datetime) -> list[CalendarEvent]:
        """Return events whose interval contains ``at``."""
        ...


class ActionExecutor:
    """Executes scheduled actions against the media player.

    This is the bridge between the scheduler and the media player.
    """

    def __init__(
        self,
        media: MediaController,
        calendar: CalendarLookup | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize executor.

        Args:
            media: Media-control implementation
            calendar: Calendar lookup used when an action names no event
            timeout: Optional limit in seconds for one media call
            clock: Source of the current instant
        """
        self.media = media
        self.calendar = calendar
        self.timeout = timeout
        self.clock = clock

    async def execute(self, action: ScheduledAction) -> ExecutionResult:
        """Execute a scheduled action.

        Args:
            action: The action to execute

        Returns:
            Structured execution result
        """
        executed_at = self.clock()
        logger.info(f"Executing action {action.id}: {action.action_type.value}")

        try:
            target = await self.resolve_target(action, executed_at)
            if action.action_type == ActionType.PLAY and not target:
                logger.warning(f"Action {action.id}: {NO_ACTIVE_EVENT}")
                return ExecutionResult(False, NO_ACTIVE_EVENT, executed_at)

            call = self.media.control_media(action.action_type, target)
            if self.timeout:
                media_result = await asyncio.wait_for(call, timeout=self.timeout)
            else:
                media_result = await call

        except asyncio.TimeoutError:
            message = f"Media control timed out after {self.timeout}s"
            logger.error(f"Action {action.id}: {message}")
            return ExecutionResult(False, message, executed_at)
        except Exception as e:
            message = f"Action execution failed: {e}"
            logger.error(f"Action {action.id}: {message}")
            return ExecutionResult(False, message, executed_at)

        if media_result.success:
            logger.info(f"Action {action.id} completed: {media_result.message}")
        else:
            logger.warning(f"Action {action.id} failed: {media_result.message}")

        return ExecutionResult(
            success=media_result.success,
            message=media_result.message,
            executed_at=executed_at,
            target=target,
        )

    async def resolve_target(self, action: ScheduledAction, at: datetime) -> str | None:
        """Pick the playlist target: the explicit event name, else the current event."""
        if action.event_name:
            return action.event_name
        if self.calendar is None:
            return None

        events = await self.calendar.current_events(at)
        if not events:
            return None

        events = sorted(events, key=lambda e: e.start)
        if len(events) > 1:
            logger.warning(
                f"{len(events)} events overlap at {to_epoch(at)}, "
                f"using the earliest: {events[0].summary}"
            )
        return events[0].summary
