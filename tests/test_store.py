"""Tests for the SQLite action store."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import START, ManualClock, daily, once
from media_scheduler.scheduler import (
    ActionCreate,
    ActionPatch,
    ActionStore,
    ActionType,
    ActionValidationError,
)
from media_scheduler.scheduler.schedule import to_epoch

UTC = timezone.utc


class TestCreate:
    """Test inserting actions."""

    async def test_assigns_identity_and_timestamps(self, store: ActionStore):
        action = await store.create(daily("09:00"))

        assert action.id
        assert action.created_at == to_epoch(START)
        assert action.updated_at == to_epoch(START)
        assert action.time == "09:00:00"

    async def test_daily_next_run_is_next_occurrence(self, store: ActionStore):
        action = await store.create(daily("09:00:00"))
        assert action.next_run == to_epoch(datetime(2024, 6, 1, 9, 0, tzinfo=UTC))

    async def test_future_one_time_next_run_is_its_date(self, store: ActionStore):
        date = START + timedelta(hours=3)
        action = await store.create(once(date))
        assert action.next_run == to_epoch(date)

    async def test_past_one_time_has_no_next_run(self, store: ActionStore):
        action = await store.create(once(START - timedelta(hours=1)))
        assert action.next_run is None

    async def test_supplied_next_run_kept(self, store: ActionStore):
        action = await store.create(daily("09:00", next_run=42))
        assert action.next_run == 42

    async def test_one_time_without_date_rejected(self, store: ActionStore):
        with pytest.raises(ActionValidationError):
            await store.create(ActionCreate(action_type="play", time="09:00", is_daily=False))
        assert await store.list() == []

    async def test_defaults_from_store(self, db_path: Path, clock: ManualClock):
        store = ActionStore(db_path, default_timezone="Asia/Kolkata", default_max_retries=7, clock=clock)
        await store.initialize()
        try:
            action = await store.create(daily("06:00"))
            assert action.timezone == "Asia/Kolkata"
            assert action.max_retries == 7
        finally:
            await store.close()


class TestDuplicateDaily:
    """Two daily actions may not share type and time."""

    async def test_duplicate_rejected(self, store: ActionStore):
        await store.create(daily("09:00"))
        with pytest.raises(ActionValidationError, match="already exists"):
            await store.create(daily("09:00:00"))

    async def test_same_time_other_type_allowed(self, store: ActionStore):
        await store.create(daily("09:00", "play"))
        stop = await store.create(daily("09:00", "stop"))
        assert stop.action_type == ActionType.STOP

    async def test_same_time_other_timezone_rejected(self, store: ActionStore):
        """The daily schedule id has no zone, so wall-clock twins collide."""
        await store.create(daily("09:00", timezone="UTC"))
        with pytest.raises(ActionValidationError, match="already exists"):
            await store.create(daily("09:00", timezone="Asia/Kolkata"))

    async def test_patch_into_collision_rejected(self, store: ActionStore):
        await store.create(daily("09:00"))
        other = await store.create(daily("10:00"))
        with pytest.raises(ActionValidationError):
            await store.patch(other.id, ActionPatch(time="09:00"))

    async def test_one_time_actions_may_share_a_time(self, store: ActionStore):
        date = START + timedelta(hours=2)
        first = await store.create(once(date))
        second = await store.create(once(date))
        assert first.schedule_id != second.schedule_id


class TestReadAndDelete:
    async def test_unknown_ids(self, store: ActionStore):
        assert await store.get("missing") is None
        assert await store.update("missing", daily("09:00")) is None
        assert await store.patch("missing", ActionPatch(is_active=False)) is None
        assert await store.delete("missing") is False

    async def test_delete(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        assert await store.delete(action.id) is True
        assert await store.get(action.id) is None

    async def test_list_ordered_by_time(self, store: ActionStore):
        await store.create(daily("21:00", "stop"))
        await store.create(daily("06:00"))
        assert [a.time for a in await store.list()] == ["06:00:00", "21:00:00"]

    async def test_list_active_only(self, store: ActionStore):
        kept = await store.create(daily("06:00"))
        paused = await store.create(daily("07:00"))
        await store.patch(paused.id, ActionPatch(is_active=False))
        assert [a.id for a in await store.list(active_only=True)] == [kept.id]

    async def test_survives_reopen(self, db_path: Path, clock: ManualClock):
        first = ActionStore(db_path, clock=clock)
        await first.initialize()
        created = await first.create(once(START + timedelta(days=1), event_name="Katha"))
        await first.close()

        second = ActionStore(db_path, clock=clock)
        await second.initialize()
        try:
            loaded = await second.get(created.id)
            assert loaded == created
        finally:
            await second.close()


class TestUpdate:
    """Full replacement of editable fields."""

    async def test_replaces_fields(self, store: ActionStore):
        action = await store.create(daily("09:00", event_name="Aarti"))
        updated = await store.update(action.id, daily("09:00", event_name=None))

        assert updated is not None
        assert updated.id == action.id
        assert updated.event_name is None
        assert updated.created_at == action.created_at

    async def test_schedule_change_recomputes_next_run(self, store: ActionStore, clock: ManualClock):
        action = await store.create(daily("09:00"))
        clock.advance(60)
        updated = await store.update(action.id, daily("10:00"))
        assert updated.next_run == to_epoch(datetime(2024, 6, 1, 10, 0, tzinfo=UTC))

    async def test_keeps_run_bookkeeping(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        await store.patch(action.id, ActionPatch(last_run=100, retry_count=2))
        updated = await store.update(action.id, daily("09:00", event_name="Other"))
        assert updated.last_run == 100
        assert updated.retry_count == 2


class TestPatch:
    """Partial updates."""

    async def test_empty_patch_rejected(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        with pytest.raises(ActionValidationError, match="No fields to update"):
            await store.patch(action.id, ActionPatch())

    async def test_time_change_recomputes_next_run(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        patched = await store.patch(action.id, ActionPatch(time="07:00"))
        assert patched.time == "07:00:00"
        assert patched.next_run == to_epoch(datetime(2024, 6, 2, 7, 0, tzinfo=UTC))

    async def test_non_schedule_change_keeps_next_run(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        patched = await store.patch(action.id, ActionPatch(event_name="Katha"))
        assert patched.next_run == action.next_run
        assert patched.event_name == "Katha"

    async def test_retry_count_never_exceeds_budget(self, store: ActionStore):
        action = await store.create(daily("09:00", max_retries=3))
        patched = await store.patch(action.id, ActionPatch(retry_count=10))
        assert patched.retry_count == 3

    async def test_switch_to_one_time_requires_date(self, store: ActionStore):
        action = await store.create(daily("09:00"))
        with pytest.raises(ActionValidationError):
            await store.patch(action.id, ActionPatch(is_daily=False))

    async def test_naive_date_localized_to_action_timezone(self, store: ActionStore):
        action = await store.create(once(
            datetime(2024, 6, 2, 10, 0), timezone="America/New_York",
        ))
        assert action.scheduled_instant() == datetime(2024, 6, 2, 14, 0, tzinfo=UTC)
        loaded = await store.get(action.id)
        assert loaded.scheduled_instant() == datetime(2024, 6, 2, 14, 0, tzinfo=UTC)
