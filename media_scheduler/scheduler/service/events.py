"""Broadcast channel for the scheduler.

Fans out ``executed`` and ``error`` events to subscribers.
"""
import asyncio
import inspect
from typing import Any, Callable

from loguru import logger

from ..schedule import utcnow
from ..types import SchedulerEvent

logger = logger.bind(module="scheduler.events")


# Handlers may be plain functions or coroutine functions
EventHandler = Callable[[SchedulerEvent], Any]


class EventEmitter:
    """Event emitter for scheduler events."""

    def __init__(self):
        self._handlers: list[EventHandler] = []
        self._pending: set[asyncio.Task] = set()

    def add_handler(self, handler: EventHandler) -> None:
        """Add an event handler."""
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        """Remove an event handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: SchedulerEvent) -> None:
        """Emit an event to all handlers.

        A failing handler is logged and does not affect the others.
        """
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_handler_done)
            except Exception as e:
                logger.error(f"Event handler error: {e}")

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Event handler error: {error}")

    async def drain(self) -> None:
        """Wait for async handlers still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class EventTypes:
    """Constants for event types."""
    EXECUTED = "executed"
    ERROR = "error"


def emit_executed(
    emitter: EventEmitter,
    action: dict[str, Any],
    result: dict[str, Any],
) -> None:
    """Announce a successful execution."""
    emitter.emit(SchedulerEvent(
        type=EventTypes.EXECUTED,
        action=action,
        timestamp=utcnow(),
        result=result,
    ))


def emit_error(
    emitter: EventEmitter,
    action: dict[str, Any],
    error: str,
) -> None:
    """Announce a failed execution."""
    emitter.emit(SchedulerEvent(
        type=EventTypes.ERROR,
        action=action,
        timestamp=utcnow(),
        error=error,
    ))
