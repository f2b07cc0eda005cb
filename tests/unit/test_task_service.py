"""Unit tests for TaskService (taskquest/services/task_service.py)"""
import asyncio

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from taskquest.exceptions import RecordNotFoundError, SyncFailure, ValidationError
from taskquest.models.task import TaskCreate, TaskPriority, TaskUpdate
from taskquest.services.calendar_sync import CalendarSync, NullCalendarSync, UNTITLED_EVENT
from taskquest.services.task_service import TaskService

START = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


def create_payload(test_user_id, **overrides):
    data = {
        "user_id": test_user_id,
        "title": "Write report",
        "priority": "medium",
        "duration_minutes": 60,
        "start_time": START.isoformat(),
        "end_time": (START + timedelta(hours=1)).isoformat(),
    }
    data.update(overrides)
    return data


@pytest.fixture
def calendar():
    """Calendar double that always succeeds"""
    mock = AsyncMock(spec=CalendarSync)
    mock.sync_event.return_value = "evt_1"
    return mock


@pytest.fixture
def synced_service(task_store, progress_store, engine, calendar):
    return TaskService(task_store, progress_store, engine, calendar)


# ============================================================================
# Create
# ============================================================================

class TestCreateTask:
    """Task creation and validation"""

    @pytest.mark.asyncio
    async def test_create_from_dict(self, task_service, test_user_id):
        result = await task_service.create_task(create_payload(test_user_id))

        assert result.task.title == "Write report"
        assert result.task.completed is False
        assert result.task.xp_value == 0
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_duration_derived_from_times(self, task_service, test_user_id):
        payload = TaskCreate(
            user_id=test_user_id,
            title="Deep work",
            start_time=START,
            end_time=START + timedelta(minutes=90),
        )

        result = await task_service.create_task(payload)

        assert result.task.duration_minutes == 90

    @pytest.mark.asyncio
    async def test_missing_title_rejected(self, task_service, test_user_id):
        payload = create_payload(test_user_id)
        del payload["title"]

        with pytest.raises(ValidationError) as exc_info:
            await task_service.create_task(payload)

        assert exc_info.value.field == "title"

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, task_service, test_user_id):
        with pytest.raises(ValidationError):
            await task_service.create_task(create_payload(test_user_id, title="   "))

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, task_service, test_user_id):
        with pytest.raises(ValidationError):
            await task_service.create_task(
                create_payload(test_user_id, end_time=(START - timedelta(hours=1)).isoformat())
            )

    @pytest.mark.asyncio
    async def test_create_syncs_calendar(self, synced_service, calendar, test_user_id):
        result = await synced_service.create_task(create_payload(test_user_id))

        calendar.sync_event.assert_awaited_once()
        assert result.task.google_event_id == "evt_1"
        stored = await synced_service.get_task(result.task.id)
        assert stored.google_event_id == "evt_1"


# ============================================================================
# Update
# ============================================================================

class TestUpdateTask:
    """Field edits and completion toggles"""

    @pytest.mark.asyncio
    async def test_complete_grants_xp(self, task_service, stored_task, test_user_id):
        task = await stored_task(priority=TaskPriority.HIGH, duration_minutes=60)

        result = await task_service.update_task(task.id, {"completed": True})

        assert result.task.completed is True
        assert result.task.xp_value == 32
        assert result.progress.xp == 32
        assert result.progress.xp_delta == 32

    @pytest.mark.asyncio
    async def test_uncomplete_reverts_xp(self, task_service, stored_task):
        task = await stored_task(priority=TaskPriority.HIGH, duration_minutes=60)
        await task_service.update_task(task.id, TaskUpdate(completed=True))

        result = await task_service.update_task(task.id, TaskUpdate(completed=False))

        assert result.task.completed is False
        assert result.task.completed_at is None
        assert result.progress.xp == 0
        assert result.progress.xp_delta == -32

    @pytest.mark.asyncio
    async def test_unchanged_completion_is_noop(self, task_service, stored_task, test_user_id):
        task = await stored_task()
        await task_service.update_task(task.id, {"completed": True})

        result = await task_service.update_task(task.id, {"completed": True})

        assert result.progress is None
        assert (await task_service.get_progress(test_user_id)).xp == 22

    @pytest.mark.asyncio
    async def test_field_edit_keeps_granted_xp(self, task_service, stored_task):
        task = await stored_task(priority=TaskPriority.HIGH, duration_minutes=60)
        await task_service.update_task(task.id, {"completed": True})

        result = await task_service.update_task(task.id, {"title": "Renamed", "priority": "low"})

        assert result.task.title == "Renamed"
        assert result.task.priority == TaskPriority.LOW
        assert result.task.completed is True
        assert result.task.xp_value == 32

    @pytest.mark.asyncio
    async def test_edit_and_complete_in_one_update(self, task_service, stored_task):
        task = await stored_task(priority=TaskPriority.LOW, duration_minutes=60)

        result = await task_service.update_task(task.id, {"priority": "high", "completed": True})

        assert result.task.xp_value == 32

    @pytest.mark.asyncio
    async def test_invalid_times_rejected(self, task_service, stored_task):
        task = await stored_task()

        with pytest.raises(ValidationError):
            await task_service.update_task(task.id, {"end_time": (task.start_time - timedelta(hours=1)).isoformat()})

    @pytest.mark.asyncio
    async def test_unknown_task(self, task_service):
        with pytest.raises(RecordNotFoundError):
            await task_service.update_task("task_missing", {"completed": True})

    @pytest.mark.asyncio
    async def test_sync_failure_is_a_warning(self, synced_service, calendar, stored_task, test_user_id):
        """A calendar outage never changes the progression result"""
        calendar.sync_event.side_effect = SyncFailure("Calendar down")
        task = await stored_task(priority=TaskPriority.MEDIUM, duration_minutes=60)

        result = await synced_service.update_task(task.id, {"completed": True})

        assert len(result.warnings) == 1
        assert "calendar" in result.warnings[0].lower()
        assert result.task.completed is True
        assert result.progress.xp == 22
        assert (await synced_service.get_progress(test_user_id)).xp == 22

    @pytest.mark.asyncio
    async def test_sync_after_completion_stores_event_id(self, synced_service, stored_task):
        task = await stored_task()

        result = await synced_service.update_task(task.id, {"completed": True})

        assert result.task.google_event_id == "evt_1"
        assert result.task.completed is True


# ============================================================================
# Delete, Leaderboard
# ============================================================================

class TestDeletion:
    """Task deletion"""

    @pytest.mark.asyncio
    async def test_deleting_completed_task_keeps_xp(self, task_service, stored_task, test_user_id):
        task = await stored_task()
        await task_service.update_task(task.id, {"completed": True})

        warnings = await task_service.delete_task(task.id)

        assert warnings == []
        with pytest.raises(RecordNotFoundError):
            await task_service.get_task(task.id)
        assert (await task_service.get_progress(test_user_id)).xp == 22

    @pytest.mark.asyncio
    async def test_calendar_delete_failure_is_a_warning(self, synced_service, calendar, stored_task):
        calendar.delete_event.side_effect = SyncFailure("Calendar down")
        task = await stored_task(google_event_id="evt_1")

        warnings = await synced_service.delete_task(task.id)

        assert len(warnings) == 1


@pytest.mark.asyncio
async def test_leaderboard(task_service, stored_task):
    for user_id, priority in [("alice", TaskPriority.HIGH), ("bob", TaskPriority.LOW)]:
        task = await stored_task(user_id=user_id, priority=priority, duration_minutes=0)
        await task_service.update_task(task.id, {"completed": True})

    ranked = await task_service.get_leaderboard(limit=10)

    assert [p.user_id for p in ranked] == ["alice", "bob"]


@pytest.mark.asyncio
async def test_leaderboard_limit_validated(task_service):
    with pytest.raises(ValidationError):
        await task_service.get_leaderboard(limit=0)


@pytest.mark.asyncio
async def test_achievement_summary(task_service, stored_task, test_user_id):
    for i in range(5):
        task = await stored_task(title=f"Task {i}", priority=TaskPriority.LOW, duration_minutes=0)
        await task_service.update_task(task.id, {"completed": True})

    data = await task_service.get_achievements(test_user_id)

    assert [a.id for a in data["achievements"]] == ["daily-warrior"]
    assert data["summary"]["daily"] == 1


# ============================================================================
# Interleaved Updates
# ============================================================================

class GatedCalendar(NullCalendarSync):
    """Holds sync_event open until released"""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def sync_event(self, task):
        self.entered.set()
        await self.release.wait()
        return "evt_1"


class TestInterleavedUpdates:
    """Saves racing other writers of the same task"""

    @pytest.mark.asyncio
    async def test_calendar_link_does_not_undo_revert(
        self, make_engine, yielding_task_store, yielding_progress_store, make_task, test_user_id
    ):
        """A revert lands while the completion's calendar sync is in flight"""
        engine = make_engine()
        calendar = GatedCalendar()
        service = TaskService(yielding_task_store, yielding_progress_store, engine, calendar)
        task = await yielding_task_store.create_task(make_task(priority=TaskPriority.HIGH))

        update = asyncio.create_task(service.update_task(task.id, {"completed": True}))
        await calendar.entered.wait()
        await engine.revert_completion(test_user_id, task)
        calendar.release.set()
        result = await update

        stored = await yielding_task_store.find_task(task.id)
        assert stored.completed is False
        assert stored.xp_value == 0
        assert stored.google_event_id == "evt_1"
        assert result.task.completed is False
        progress = await yielding_progress_store.get_or_create_progress(test_user_id)
        assert progress.xp == 0
        assert progress.tasks_completed == 0

    @pytest.mark.asyncio
    async def test_field_edit_racing_grant_keeps_both(
        self, make_engine, yielding_task_store, yielding_progress_store, make_task, test_user_id
    ):
        engine = make_engine()
        service = TaskService(yielding_task_store, yielding_progress_store, engine)
        task = await yielding_task_store.create_task(make_task(priority=TaskPriority.HIGH))

        await asyncio.gather(
            service.update_task(task.id, {"title": "Renamed"}),
            engine.grant_completion(test_user_id, task),
        )

        stored = await yielding_task_store.find_task(task.id)
        assert stored.title == "Renamed"
        assert stored.completed is True
        assert stored.xp_value == 32
        assert (await yielding_progress_store.get_or_create_progress(test_user_id)).xp == 32


# ============================================================================
# Calendar Import
# ============================================================================

def calendar_event(event_id, summary="Design review", minutes=90, start="2024-03-11T09:00:00Z"):
    begin = datetime.fromisoformat(start.replace("Z", "+00:00"))
    event = {
        "id": event_id,
        "start": {"dateTime": start},
        "end": {"dateTime": (begin + timedelta(minutes=minutes)).isoformat()},
    }
    if summary is not None:
        event["summary"] = summary
    return event


class TestCalendarImport:
    """Upcoming events become pending tasks"""

    @pytest.mark.asyncio
    async def test_imports_events_as_pending_tasks(self, synced_service, calendar, test_user_id):
        calendar.list_events.return_value = [
            calendar_event("evt_a", minutes=90),
            calendar_event("evt_b", summary=None, minutes=45),
        ]

        result = await synced_service.import_calendar_events(test_user_id)

        assert [t.google_event_id for t in result.tasks] == ["evt_a", "evt_b"]
        assert [t.title for t in result.tasks] == ["Design review", UNTITLED_EVENT]
        assert all(not t.completed and t.xp_value == 0 for t in result.tasks)
        assert result.estimated_xp == {result.tasks[0].id: 30, result.tasks[1].id: 15}
        assert result.skipped == 0
        assert len(await synced_service.list_tasks(test_user_id)) == 2

    @pytest.mark.asyncio
    async def test_passes_time_min(self, synced_service, calendar, test_user_id):
        calendar.list_events.return_value = []
        since = datetime(2024, 3, 11, tzinfo=timezone.utc)

        await synced_service.import_calendar_events(test_user_id, time_min=since)

        calendar.list_events.assert_awaited_once_with(time_min=since)

    @pytest.mark.asyncio
    async def test_linked_events_are_skipped(self, synced_service, calendar, stored_task, test_user_id):
        await stored_task(google_event_id="evt_a")
        calendar.list_events.return_value = [calendar_event("evt_a"), calendar_event("evt_b")]

        first = await synced_service.import_calendar_events(test_user_id)
        second = await synced_service.import_calendar_events(test_user_id)

        assert [t.google_event_id for t in first.tasks] == ["evt_b"]
        assert first.skipped == 1
        assert second.tasks == []
        assert second.skipped == 2

    @pytest.mark.asyncio
    async def test_invalid_event_is_a_warning(self, synced_service, calendar, test_user_id):
        calendar.list_events.return_value = [
            {"id": "evt_no_start", "summary": "Floating"},
            calendar_event("evt_ok"),
        ]

        result = await synced_service.import_calendar_events(test_user_id)

        assert [t.google_event_id for t in result.tasks] == ["evt_ok"]
        assert len(result.warnings) == 1
        assert "evt_no_start" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, synced_service, calendar, test_user_id):
        calendar.list_events.side_effect = SyncFailure("Calendar down", operation="list_events")

        with pytest.raises(SyncFailure):
            await synced_service.import_calendar_events(test_user_id)

        assert await synced_service.list_tasks(test_user_id) == []

    @pytest.mark.asyncio
    async def test_disabled_calendar_imports_nothing(self, task_service, test_user_id):
        result = await task_service.import_calendar_events(test_user_id)

        assert result.tasks == []
        assert result.skipped == 0
