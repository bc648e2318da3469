"""Scheduler module for time-triggered media-control actions.

This module provides:
- Daily (time-of-day) and one-time (absolute date) actions
- SQLite persistence
- A live timer registry rebuilt from the store on every change
- asyncio-based timers with a fire-time freshness check
"""
# Core types
from .types import (
    # Errors
    ActionValidationError,
    ScheduleConflictError,
    # Action types
    ActionType,
    ScheduleKind,
    CalendarEvent,
    # Result types
    MediaResult,
    ExecutionResult,
    RemoveResult,
    SchedulerEvent,
    # Monitoring types
    HealthStatus,
    EntryInfo,
    DebugSnapshot,
)

# Models
from .models import (
    ScheduledAction,
    ActionCreate,
    ActionPatch,
    validate_action,
)

# Schedule utilities
from .schedule import (
    next_daily_occurrence,
    compute_next_run,
    describe_schedule,
    normalize_time,
    utcnow,
)

# Service
from .service import SchedulerService, ActionStore, ScheduleRegistry

# Executor
from .executor import ActionExecutor, MediaController, CalendarLookup

__all__ = [
    # Core types
    "ActionValidationError",
    "ScheduleConflictError",
    "ActionType",
    "ScheduleKind",
    "CalendarEvent",
    "MediaResult",
    "ExecutionResult",
    "RemoveResult",
    "SchedulerEvent",
    # Monitoring types
    "HealthStatus",
    "EntryInfo",
    "DebugSnapshot",
    # Models
    "ScheduledAction",
    "ActionCreate",
    "ActionPatch",
    "validate_action",
    # Schedule utilities
    "next_daily_occurrence",
    "compute_next_run",
    "describe_schedule",
    "normalize_time",
    "utcnow",
    # Service
    "SchedulerService",
    "ActionStore",
    "ScheduleRegistry",
    # Executor
    "ActionExecutor",
    "MediaController",
    "CalendarLookup",
]
