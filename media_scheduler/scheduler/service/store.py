"""SQLite persistence layer for scheduled actions.

One row per action in ``scheduled_actions``; every write is a single
statement followed by a commit, so writes are atomic per row.
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

import aiosqlite
from loguru import logger

from ..models import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEZONE,
    ActionCreate,
    ActionPatch,
    ScheduledAction,
    refresh_next_run,
    validate_action,
)
from ..schedule import parse_date, to_epoch, utcnow
from ..types import ActionType, ActionValidationError

logger = logger.bind(module="scheduler.store")

_COLUMNS = (
    "id", "event_id", "event_name", "action_type", "time", "date",
    "is_daily", "is_active", "timezone", "last_run", "next_run",
    "max_retries", "retry_count", "created_at", "updated_at",
)


class ActionStore:
    """SQLite-based action persistence."""

    def __init__(
        self,
        db_path: str | Path,
        default_timezone: str = DEFAULT_TIMEZONE,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize action store.

        Args:
            db_path: Path to SQLite database
            default_timezone: Zone applied to drafts that name none
            default_max_retries: Retry budget applied to drafts that name none
            clock: Source of the current instant for ``nextRun`` computation
        """
        self.db_path = Path(db_path)
        self.default_timezone = default_timezone
        self.default_max_retries = default_max_retries
        self.clock = clock
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize database schema."""
        if self._connection:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS scheduled_actions (
                id TEXT PRIMARY KEY,
                event_id TEXT,
                event_name TEXT,
                action_type TEXT NOT NULL,
                time TEXT NOT NULL,
                date TEXT,
                is_daily INTEGER DEFAULT 0,
                is_active INTEGER DEFAULT 1,
                timezone TEXT NOT NULL,
                last_run INTEGER,
                next_run INTEGER,
                max_retries INTEGER DEFAULT 3,
                retry_count INTEGER DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        await self._connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_actions_active ON scheduled_actions(is_active)"
        )
        await self._connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_actions_daily "
            "ON scheduled_actions(is_daily, action_type, time)"
        )

        await self._connection.commit()
        logger.info(f"Action store initialized at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("ActionStore not initialized")
        return self._connection

    # ============== Reads ==============

    async def list(self, active_only: bool = False) -> list[ScheduledAction]:
        """List actions ordered by time-of-day."""
        query = "SELECT * FROM scheduled_actions"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY time ASC, created_at ASC"

        actions = []
        async with self._conn().execute(query) as cursor:
            rows = await cursor.fetchall()
            for row in rows:
                actions.append(self._row_to_action(row, cursor.description))
        return actions

    async def get(self, action_id: str) -> ScheduledAction | None:
        """Get an action by ID."""
        async with self._conn().execute(
            "SELECT * FROM scheduled_actions WHERE id = ?", (action_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_action(row, cursor.description)
        return None

    # ============== Writes ==============

    async def create(self, draft: ActionCreate) -> ScheduledAction:
        """Validate and insert a new action.

        Raises:
            ActionValidationError: If the draft is invalid
        """
        action = draft.to_action(self.default_timezone, self.default_max_retries)
        validate_action(action)
        await self._check_daily_unique(action)

        action.id = uuid4().hex[:12]
        now_s = to_epoch(self.clock())
        action.created_at = now_s
        action.updated_at = now_s
        if action.next_run is None:
            refresh_next_run(action, self.clock())

        await self._write(action, insert=True)
        logger.info(f"Created action {action.id}: {action.action_type.value} {action.describe()}")
        return action

    async def update(self, action_id: str, draft: ActionCreate) -> ScheduledAction | None:
        """Replace every user-editable field of an action.

        Returns:
            Updated action, or None if not found
        """
        existing = await self.get(action_id)
        if not existing:
            return None

        action = draft.to_action(self.default_timezone, self.default_max_retries)
        action.id = existing.id
        action.created_at = existing.created_at
        action.updated_at = to_epoch(self.clock())
        if draft.last_run is None:
            action.last_run = existing.last_run
        action.retry_count = existing.retry_count
        validate_action(action)
        await self._check_daily_unique(action)

        if draft.next_run is None:
            if _schedule_changed(existing, action) or existing.next_run is None:
                refresh_next_run(action, self.clock())
            else:
                action.next_run = existing.next_run

        await self._write(action)
        logger.info(f"Updated action {action.id}")
        return action

    async def patch(self, action_id: str, patch: ActionPatch) -> ScheduledAction | None:
        """Change only the supplied fields of an action.

        Returns:
            Patched action, or None if not found

        Raises:
            ActionValidationError: If the patch is empty or the merged record is invalid
        """
        if patch.is_empty:
            raise ActionValidationError("No fields to update")

        action = await self.get(action_id)
        if not action:
            return None

        patch.apply(action)
        action.updated_at = to_epoch(self.clock())
        validate_action(action)
        await self._check_daily_unique(action)

        if patch.touches_schedule and patch.next_run is None:
            refresh_next_run(action, self.clock())

        await self._write(action)
        logger.debug(f"Patched action {action.id}")
        return action

    async def delete(self, action_id: str) -> bool:
        """Permanently delete an action."""
        conn = self._conn()
        result = await conn.execute(
            "DELETE FROM scheduled_actions WHERE id = ?", (action_id,)
        )
        await conn.commit()
        return result.rowcount > 0

    # ============== Internal ==============

    async def _check_daily_unique(self, action: ScheduledAction) -> None:
        """Reject a second daily action with the same type and time."""
        if not action.is_daily:
            return
        async with self._conn().execute(
            "SELECT id FROM scheduled_actions "
            "WHERE is_daily = 1 AND action_type = ? AND time = ? AND id != ?",
            (action.action_type.value, action.time, action.id),
        ) as cursor:
            row = await cursor.fetchone()
        if row:
            raise ActionValidationError(
                f"A daily {action.action_type.value} action at {action.time} "
                f"already exists ({row[0]})"
            )

    async def _write(self, action: ScheduledAction, insert: bool = False) -> None:
        conn = self._conn()
        values = (
            action.id,
            action.event_id,
            action.event_name,
            action.action_type.value,
            action.time,
            action.date.isoformat() if action.date else None,
            1 if action.is_daily else 0,
            1 if action.is_active else 0,
            action.timezone,
            action.last_run,
            action.next_run,
            action.max_retries,
            action.retry_count,
            action.created_at,
            action.updated_at,
        )
        if insert:
            placeholders = ", ".join("?" for _ in _COLUMNS)
            await conn.execute(
                f"INSERT INTO scheduled_actions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
        else:
            assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
            await conn.execute(
                f"UPDATE scheduled_actions SET {assignments} WHERE id = ?",
                values[1:] + (action.id,),
            )
        await conn.commit()

    def _row_to_action(self, row: Any, description: Any) -> ScheduledAction:
        """Convert a database row to a ScheduledAction."""
        columns = [col[0] for col in description]
        data = dict(zip(columns, row))

        return ScheduledAction(
            id=data["id"],
            event_id=data.get("event_id"),
            event_name=data.get("event_name"),
            action_type=ActionType(data["action_type"]),
            time=data["time"],
            date=parse_date(data.get("date")),
            is_daily=bool(data.get("is_daily", 0)),
            is_active=bool(data.get("is_active", 1)),
            timezone=data.get("timezone") or self.default_timezone,
            last_run=data.get("last_run"),
            next_run=data.get("next_run"),
            max_retries=data.get("max_retries", DEFAULT_MAX_RETRIES),
            retry_count=data.get("retry_count", 0),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
        )


def _schedule_changed(old: ScheduledAction, new: ScheduledAction) -> bool:
    return (
        old.time != new.time
        or old.date != new.date
        or old.is_daily != new.is_daily
        or old.timezone != new.timezone
    )
