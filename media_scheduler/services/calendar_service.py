"""Calendar event lookup.

Stores imported calendar events in SQLite and answers which events are
running at a given instant.
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger

from ..scheduler.schedule import to_epoch
from ..scheduler.types import CalendarEvent

logger = logger.bind(module="calendar_service")


class CalendarEventStore:
    """SQLite-backed calendar events."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize database schema."""
        if self._connection:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS calendar_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                uid TEXT DEFAULT '',
                summary TEXT NOT NULL,
                description TEXT DEFAULT '',
                location TEXT DEFAULT '',
                start INTEGER NOT NULL,
                "end" INTEGER NOT NULL
            )
        """)
        await self._connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_span ON calendar_events(start, \"end\")"
        )
        await self._connection.commit()
        logger.info(f"Calendar store initialized at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("CalendarEventStore not initialized")
        return self._connection

    async def add(self, event: CalendarEvent) -> CalendarEvent:
        """Insert an event and return it with its id."""
        conn = self._conn()
        cursor = await conn.execute(
            'INSERT INTO calendar_events (uid, summary, description, location, start, "end") '
            "VALUES (?, ?, ?, ?, ?, ?)",
            (event.uid, event.summary, event.description, event.location, event.start, event.end),
        )
        await conn.commit()
        event.id = cursor.lastrowid
        return event

    async def list(self) -> list[CalendarEvent]:
        async with self._conn().execute(
            "SELECT * FROM calendar_events ORDER BY start ASC"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_event(row, cursor.description) for row in rows]

    async def get(self, event_id: int) -> CalendarEvent | None:
        async with self._conn().execute(
            "SELECT * FROM calendar_events WHERE id = ?", (event_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_event(row, cursor.description) if row else None

    async def update(self, event_id: int, event: CalendarEvent) -> CalendarEvent | None:
        """Replace an event's fields.

        Returns:
            Updated event, or None if not found
        """
        conn = self._conn()
        result = await conn.execute(
            'UPDATE calendar_events SET uid = ?, summary = ?, description = ?, '
            'location = ?, start = ?, "end" = ? WHERE id = ?',
            (
                event.uid, event.summary, event.description, event.location,
                event.start, event.end, event_id,
            ),
        )
        await conn.commit()
        if result.rowcount == 0:
            return None
        event.id = event_id
        return event

    async def current_events(self, at: datetime) -> list[CalendarEvent]:
        """Events whose interval contains ``at``, earliest start first."""
        at_s = to_epoch(at)
        async with self._conn().execute(
            'SELECT * FROM calendar_events WHERE start <= ? AND "end" >= ? ORDER BY start ASC',
            (at_s, at_s),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_event(row, cursor.description) for row in rows]

    async def delete(self, event_id: int) -> bool:
        conn = self._conn()
        result = await conn.execute("DELETE FROM calendar_events WHERE id = ?", (event_id,))
        await conn.commit()
        return result.rowcount > 0

    def _row_to_event(self, row: Any, description: Any) -> CalendarEvent:
        columns = [col[0] for col in description]
        data = dict(zip(columns, row))
        return CalendarEvent(
            id=data["id"],
            uid=data.get("uid") or "",
            summary=data["summary"],
            description=data.get("description") or "",
            location=data.get("location") or "",
            start=data["start"],
            end=data["end"],
        )
