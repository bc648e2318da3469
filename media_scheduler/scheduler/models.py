"""Data models for scheduled actions.

``ScheduledAction`` is the durable record; ``ActionCreate`` and
``ActionPatch`` are the drafts accepted by the store.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from .schedule import (
    compute_next_run,
    describe_schedule,
    localize,
    normalize_time,
    one_time_instant,
    parse_date,
    resolve_timezone,
    utcnow,
    to_epoch,
)
from .types import ActionType, ActionValidationError, ScheduleKind

DEFAULT_TIMEZONE = "UTC"
DEFAULT_MAX_RETRIES = 3


def _now_s() -> int:
    return to_epoch(utcnow())


def _action_type(value: Any) -> ActionType:
    if isinstance(value, ActionType):
        return value
    try:
        return ActionType(str(value).lower())
    except ValueError as e:
        raise ActionValidationError(
            f"Invalid action type: {value!r} (expected play, pause or stop)"
        ) from e


def _date(value: Any) -> datetime | None:
    try:
        return parse_date(value)
    except ValueError as e:
        raise ActionValidationError(str(e)) from e


@dataclass
class ScheduledAction:
    """A durable, scheduled media-control action."""
    # Identity (assigned by the store)
    id: str = ""

    # Calendar correlation
    event_id: str | None = None
    event_name: str | None = None

    # Definition
    action_type: ActionType = ActionType.PLAY
    time: str = "00:00:00"
    date: datetime | None = None
    is_daily: bool = False
    is_active: bool = True
    timezone: str = DEFAULT_TIMEZONE

    # Runtime state (epoch seconds)
    last_run: int | None = None
    next_run: int | None = None

    # Retry budget
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_count: int = 0

    # Timestamps (epoch seconds)
    created_at: int = field(default_factory=_now_s)
    updated_at: int = field(default_factory=_now_s)

    @property
    def kind(self) -> ScheduleKind:
        return ScheduleKind.DAILY if self.is_daily else ScheduleKind.ONE_TIME

    @property
    def schedule_id(self) -> str:
        """Stable registry key: composite for daily, store id for one-time."""
        if self.is_daily:
            return f"daily:{self.action_type.value}:{self.time}"
        return f"once:{self.id}"

    @property
    def is_exhausted(self) -> bool:
        """True once the retry budget is used up."""
        return self.max_retries > 0 and self.retry_count >= self.max_retries

    def scheduled_instant(self) -> datetime | None:
        """The absolute fire instant of a one-time action, in UTC."""
        if self.is_daily or self.date is None:
            return None
        return one_time_instant(self.date, self.timezone)

    def describe(self) -> str:
        return describe_schedule(self.is_daily, self.time, self.date, self.timezone)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a camelCase dictionary for JSON output."""
        return {
            "id": self.id,
            "eventId": self.event_id,
            "eventName": self.event_name,
            "actionType": self.action_type.value,
            "time": self.time,
            "date": self.date.isoformat() if self.date else None,
            "isDaily": self.is_daily,
            "isActive": self.is_active,
            "timezone": self.timezone,
            "lastRun": self.last_run,
            "nextRun": self.next_run,
            "maxRetries": self.max_retries,
            "retryCount": self.retry_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledAction":
        """Create from a camelCase dictionary."""
        return cls(
            id=str(data.get("id") or ""),
            event_id=data.get("eventId"),
            event_name=data.get("eventName"),
            action_type=_action_type(data.get("actionType", "play")),
            time=data.get("time", "00:00:00"),
            date=_date(data.get("date")),
            is_daily=bool(data.get("isDaily", False)),
            is_active=bool(data.get("isActive", True)),
            timezone=data.get("timezone") or DEFAULT_TIMEZONE,
            last_run=data.get("lastRun"),
            next_run=data.get("nextRun"),
            max_retries=data.get("maxRetries", DEFAULT_MAX_RETRIES),
            retry_count=data.get("retryCount", 0),
            created_at=data.get("createdAt") or _now_s(),
            updated_at=data.get("updatedAt") or _now_s(),
        )


def validate_action(action: ScheduledAction) -> ScheduledAction:
    """Validate and normalize an action in place.

    Raises:
        ActionValidationError: If the action cannot be scheduled
    """
    action.action_type = _action_type(action.action_type)

    try:
        action.time = normalize_time(action.time)
    except ValueError as e:
        raise ActionValidationError(str(e)) from e

    try:
        resolve_timezone(action.timezone)
    except ValueError as e:
        raise ActionValidationError(str(e)) from e

    if not action.is_daily and action.date is None:
        raise ActionValidationError("Date is required for one-time actions")
    if action.date is not None:
        action.date = localize(action.date, action.timezone)

    if action.max_retries < 0:
        raise ActionValidationError("maxRetries must not be negative")
    action.retry_count = max(0, min(action.retry_count, action.max_retries))

    return action


def refresh_next_run(action: ScheduledAction, now: datetime | None = None) -> None:
    """Recompute the ``next_run`` cache from the scheduling fields."""
    action.next_run = compute_next_run(
        action.is_daily, action.time, action.date, action.timezone, now
    )


@dataclass
class ActionCreate:
    """Request to create (or fully replace) an action."""
    action_type: ActionType | str = ActionType.PLAY
    time: str = "00:00:00"
    is_daily: bool = False
    date: datetime | None = None
    event_id: str | None = None
    event_name: str | None = None
    is_active: bool = True
    timezone: str | None = None
    max_retries: int | None = None
    last_run: int | None = None
    next_run: int | None = None

    def to_action(
        self,
        default_timezone: str = DEFAULT_TIMEZONE,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> ScheduledAction:
        return ScheduledAction(
            event_id=self.event_id,
            event_name=self.event_name,
            action_type=_action_type(self.action_type),
            time=self.time,
            date=self.date,
            is_daily=self.is_daily,
            is_active=self.is_active,
            timezone=self.timezone or default_timezone,
            max_retries=(
                self.max_retries if self.max_retries is not None else default_max_retries
            ),
            last_run=self.last_run,
            next_run=self.next_run,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionCreate":
        if "actionType" not in data or "time" not in data:
            raise ActionValidationError("actionType and time are required")
        return cls(
            action_type=_action_type(data["actionType"]),
            time=data["time"],
            is_daily=bool(data.get("isDaily", False)),
            date=_date(data.get("date")),
            event_id=data.get("eventId"),
            event_name=data.get("eventName"),
            is_active=bool(data.get("isActive", True)),
            timezone=data.get("timezone"),
            max_retries=data.get("maxRetries"),
            last_run=data.get("lastRun"),
            next_run=data.get("nextRun"),
        )


# Fields whose change invalidates the next_run cache
_SCHEDULE_FIELDS = ("time", "date", "is_daily", "timezone")

_PATCH_KEYS = {
    "eventId": "event_id",
    "eventName": "event_name",
    "actionType": "action_type",
    "time": "time",
    "date": "date",
    "isDaily": "is_daily",
    "isActive": "is_active",
    "timezone": "timezone",
    "lastRun": "last_run",
    "nextRun": "next_run",
    "maxRetries": "max_retries",
    "retryCount": "retry_count",
}


@dataclass
class ActionPatch:
    """Partial update; ``None`` leaves a field unchanged."""
    event_id: str | None = None
    event_name: str | None = None
    action_type: ActionType | None = None
    time: str | None = None
    date: datetime | None = None
    is_daily: bool | None = None
    is_active: bool | None = None
    timezone: str | None = None
    last_run: int | None = None
    next_run: int | None = None
    max_retries: int | None = None
    retry_count: int | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    @property
    def touches_schedule(self) -> bool:
        return any(getattr(self, name) is not None for name in _SCHEDULE_FIELDS)

    def apply(self, action: ScheduledAction) -> None:
        """Apply patch to an action."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                setattr(action, f.name, value)
        if self.action_type is not None:
            action.action_type = _action_type(self.action_type)
        action.updated_at = _now_s()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionPatch":
        values: dict[str, Any] = {}
        for key, name in _PATCH_KEYS.items():
            if data.get(key) is None:
                continue
            value = data[key]
            if name == "action_type":
                value = _action_type(value)
            elif name == "date":
                value = _date(value)
            elif name in ("is_daily", "is_active"):
                value = bool(value)
            values[name] = value
        return cls(**values)
