"""Core type definitions for the action scheduler.

This module defines:
- Action and schedule kinds
- Result types for media control and action execution
- Broadcast events
- Health and debug snapshots
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ============== Errors ==============

class ActionValidationError(ValueError):
    """Raised when an action draft or patch is rejected by the store."""


class ScheduleConflictError(RuntimeError):
    """Raised when two actions resolve to the same schedule entry."""


# ============== Action Types ==============

class ActionType(str, Enum):
    """Media-control action triggered by a schedule."""
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"


class ScheduleKind(str, Enum):
    """Kind of live schedule entry."""
    DAILY = "daily"         # Repeats every 24 hours at a local time-of-day
    ONE_TIME = "one_time"   # Fires once at an absolute instant


# ============== Calendar ==============

@dataclass
class CalendarEvent:
    """A calendar event used to resolve playlist targets."""
    summary: str
    start: int  # epoch seconds
    end: int    # epoch seconds
    id: int | None = None
    description: str = ""
    location: str = ""
    uid: str = ""

    def contains(self, at_s: int) -> bool:
        return self.start <= at_s <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "start": self.start,
            "end": self.end,
            "description": self.description,
            "location": self.location,
            "uid": self.uid,
        }


# ============== Result Types ==============

@dataclass
class MediaResult:
    """Outcome reported by the media-control boundary."""
    success: bool
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class ExecutionResult:
    """Outcome of executing one scheduled action."""
    success: bool
    message: str
    executed_at: datetime
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "executedAt": self.executed_at.isoformat(),
            "target": self.target,
        }


@dataclass
class RemoveResult:
    """Result of removing an action."""
    action_id: str
    removed: bool
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionId": self.action_id,
            "removed": self.removed,
            "reason": self.reason,
        }


# ============== Events ==============

@dataclass
class SchedulerEvent:
    """Event fanned out on the broadcast channel.

    ``type`` is ``"executed"`` (with ``result``) or ``"error"`` (with ``error``).
    """
    type: str
    action: dict[str, Any]
    timestamp: datetime
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


# ============== Monitoring Types ==============

@dataclass
class HealthStatus:
    """Operational health of the scheduler."""
    running: bool
    is_initialized: bool
    active_schedules: int
    scheduled_entries: int
    failed_actions: int
    uptime: float  # seconds since start()
    last_initialization: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "isInitialized": self.is_initialized,
            "activeSchedules": self.active_schedules,
            "scheduledEntries": self.scheduled_entries,
            "failedActions": self.failed_actions,
            "uptime": self.uptime,
            "lastInitialization": (
                self.last_initialization.isoformat() if self.last_initialization else None
            ),
            "lastError": self.last_error,
        }


@dataclass
class EntryInfo:
    """Debug view of one live schedule entry."""
    schedule_id: str
    action_id: str
    kind: ScheduleKind
    scheduled_instant: datetime
    timezone: str
    is_active: bool
    has_timeout: bool
    has_interval: bool
    ghost: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduleId": self.schedule_id,
            "actionId": self.action_id,
            "kind": self.kind.value,
            "scheduledTime": self.scheduled_instant.isoformat(),
            "timezone": self.timezone,
            "isActive": self.is_active,
            "hasTimeout": self.has_timeout,
            "hasInterval": self.has_interval,
            "ghost": self.ghost,
        }


@dataclass
class DebugSnapshot:
    """Registry dump used to spot ghost entries."""
    is_initialized: bool
    registry_size: int
    active_actions: int
    entries: list[EntryInfo] = field(default_factory=list)

    @property
    def ghosts(self) -> list[EntryInfo]:
        return [e for e in self.entries if e.ghost]

    def to_dict(self) -> dict[str, Any]:
        return {
            "isInitialized": self.is_initialized,
            "registrySize": self.registry_size,
            "activeActions": self.active_actions,
            "ghostCount": len(self.ghosts),
            "schedules": [e.to_dict() for e in self.entries],
        }
