"""State management for the scheduler service.

Contains dependency injection and runtime state management.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from ..schedule import utcnow
from ..types import ExecutionResult


class ActionRunner(Protocol):
    """Protocol for action execution."""

    async def execute(self, action: Any) -> ExecutionResult:
        """Execute an action and return the result."""
        ...


@dataclass
class SchedulerServiceDeps:
    """Dependencies for the scheduler service.

    This allows for dependency injection of external services.
    """
    executor: ActionRunner
    clock: Callable[[], datetime] = utcnow
    timer_loop: Any = None  # anything with call_later(); None means the running loop


@dataclass
class SchedulerServiceState:
    """Runtime state of the scheduler service."""
    running: bool = False
    is_initialized: bool = False
    started_at: datetime | None = None
    last_initialization: datetime | None = None
    last_error: str | None = None
    housekeeping_task: asyncio.Task | None = None

    # Counts cached by the last successful reconciliation
    active_actions: int = 0
    failed_actions: int = 0

    # In-flight fire and manual-run tasks
    fire_tasks: set[asyncio.Task] = field(default_factory=set)

    # Serializes reconciliation, mutations and fire paths
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def reset(self) -> None:
        """Reset state to initial values."""
        self.running = False
        self.is_initialized = False
        self.started_at = None
        self.housekeeping_task = None
        self.fire_tasks.clear()
