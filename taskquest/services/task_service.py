"""
TaskService - Task Business Logic

Handles task CRUD, routes completion toggles through the progression engine,
pushes changes to the calendar and imports calendar events as tasks. Calendar
failures on push are collected as warnings; they never undo a saved task or a
progression change.

Writes never save a task snapshot read earlier in the request: field edits are
merged onto a fresh read and saved with the task's version, and the calendar
event id is written on its own.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import pydantic

from taskquest import config
from taskquest.db.base import ProgressStore, TaskStore
from taskquest.exceptions import RecordNotFoundError, SyncFailure, ValidationError
from taskquest.gamification.achievement_system import summarize_achievements
from taskquest.gamification.progression import CONFLICT_BASE_DELAY, ProgressionEngine
from taskquest.gamification.xp_system import calculate_category_xp
from taskquest.models.progress import Achievement, ProgressionSnapshot, UserProgress
from taskquest.models.task import Task, TaskCreate, TaskUpdate
from taskquest.resilience.retry import retry_with_backoff
from taskquest.services.calendar_sync import CalendarSync, NullCalendarSync, event_to_task

logger = logging.getLogger(__name__)


@dataclass
class TaskResult:
    """A saved task plus what happened around it"""
    task: Task
    progress: Optional[ProgressionSnapshot] = None
    warnings: List[str] = field(default_factory=list)



@dataclass
class CalendarImportResult:
    """
    Tasks created from calendar events

    `estimated_xp` maps each new task id to a category-weighted preview; the
    XP actually granted on completion is computed when the task is completed.
    """
    tasks: List[Task] = field(default_factory=list)
    estimated_xp: Dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)


def to_validation_error(error: pydantic.ValidationError, user_id: Optional[str] = None) -> ValidationError:
    """First pydantic error as a ValidationError"""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        first.get("msg", str(error)),
        field=location,
        value=first.get("input") if location else None,
        user_id=user_id,
    )


class TaskService:
    """
    Service for tasks and their progression side effects.

    Responsibilities:
    - Task creation, lookup, update and deletion
    - Completion toggles via ProgressionEngine (grant/revert)
    - Calendar sync after saves (non-fatal) and calendar event import
    - Achievements and leaderboard
    """

    def __init__(
        self,
        task_store: TaskStore,
        progress_store: ProgressStore,
        engine: ProgressionEngine,
        calendar: Optional[CalendarSync] = None,
    ):
        self.task_store = task_store
        self.progress_store = progress_store
        self.engine = engine
        self.calendar = calendar or NullCalendarSync()
        logger.debug("TaskService initialized")

    async def create_task(self, data: Union[TaskCreate, Dict[str, Any]]) -> TaskResult:
        """
        Create a pending task

        When `duration_minutes` is omitted it is derived from the start and end
        times.

        Raises:
            ValidationError: missing fields, empty title, end before start
        """
        try:
            payload = data if isinstance(data, TaskCreate) else TaskCreate.model_validate(data)
            values = payload.model_dump()
            if values["duration_minutes"] is None:
                span = payload.end_time - payload.start_time
                values["duration_minutes"] = max(0, int(span.total_seconds() // 60))
            task = Task(**values)
        except pydantic.ValidationError as e:
            user_id = data.get("user_id") if isinstance(data, dict) else getattr(data, "user_id", None)
            raise to_validation_error(e, user_id=user_id) from e

        task = await self.task_store.create_task(task)
        logger.info(f"Created task {task.id} for user {task.user_id}")

        warnings: List[str] = []
        task = await self._sync_calendar(task, warnings)
        return TaskResult(task=task, warnings=warnings)

    async def get_task(self, task_id: str) -> Task:
        """Raises RecordNotFoundError when the task does not exist"""
        task = await self.task_store.find_task(task_id)
        if task is None:
            raise RecordNotFoundError(f"Task {task_id} not found", record_type="Task", record_id=task_id)
        return task

    async def list_tasks(self, user_id: str) -> List[Task]:
        return await self.task_store.list_tasks(user_id)

    async def update_task(self, task_id: str, update: Union[TaskUpdate, Dict[str, Any]]) -> TaskResult:
        """
        Apply a partial update to a task

        Field changes are saved first. A change of `completed` then calls
        grant_completion or revert_completion, and the calendar is synced
        last. Sending `completed` equal to the current state changes nothing.

        Returns:
            TaskResult with the saved task, the progression snapshot when the
            completion state changed, and calendar warnings

        Raises:
            RecordNotFoundError: unknown task
            ValidationError: invalid field values
            ConcurrencyConflict / PersistenceFailure: from the progression engine
        """
        task = await self.get_task(task_id)

        try:
            changes = update if isinstance(update, TaskUpdate) else TaskUpdate.model_validate(update)
        except pydantic.ValidationError as e:
            raise to_validation_error(e, user_id=task.user_id) from e

        fields = changes.model_dump(exclude_unset=True, exclude={"completed"})
        fields = {name: value for name, value in fields.items() if value is not None}
        if fields:
            task = await retry_with_backoff(
                self._edit_fields,
                task_id,
                fields,
                max_retries=config.PROGRESS_MAX_RETRIES,
                base_delay=CONFLICT_BASE_DELAY,
            )
            logger.info(f"Updated task {task_id} fields: {sorted(fields)}")

        progress: Optional[ProgressionSnapshot] = None
        if changes.completed is not None and changes.completed != task.completed:
            if changes.completed:
                progress = await self.engine.grant_completion(task.user_id, task)
            else:
                progress = await self.engine.revert_completion(task.user_id, task)
            task = await self.get_task(task_id)

        warnings: List[str] = []
        task = await self._sync_calendar(task, warnings)
        return TaskResult(task=task, progress=progress, warnings=warnings)

    async def delete_task(self, task_id: str) -> List[str]:
        """
        Delete a task. XP granted for it stays with the user.

        Returns:
            Calendar warnings, if the event could not be removed
        """
        task = await self.get_task(task_id)
        await self.task_store.delete_task(task_id)
        logger.info(f"Deleted task {task_id} of user {task.user_id} (completed={task.completed})")

        warnings: List[str] = []
        try:
            await self.calendar.delete_event(task)
        except SyncFailure as e:
            warnings.append(e.user_message)
        return warnings

    async def get_progress(self, user_id: str) -> ProgressionSnapshot:
        return await self.engine.get_snapshot(user_id)

    async def get_achievements(self, user_id: str) -> Dict[str, Any]:
        """Unlocked achievements with per-category counts"""
        snapshot = await self.engine.get_snapshot(user_id)
        achievements: List[Achievement] = snapshot.achievements
        return {
            "user_id": user_id,
            "achievements": achievements,
            "summary": summarize_achievements(achievements),
        }

    async def get_leaderboard(self, limit: int = 10) -> List[UserProgress]:
        """Users ranked by XP"""
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit", value=limit)
        return await self.progress_store.list_progress(limit=limit)

    async def import_calendar_events(
        self,
        user_id: str,
        time_min: Optional[datetime] = None,
    ) -> CalendarImportResult:
        """
        Create pending tasks for upcoming calendar events

        Events already linked to one of the user's tasks are skipped. Events
        that cannot be turned into a task are skipped with a warning.

        Raises:
            SyncFailure: the calendar could not be read
        """
        events = await self.calendar.list_events(time_min=time_min)
        existing = {
            t.google_event_id for t in await self.task_store.list_tasks(user_id) if t.google_event_id
        }

        result = CalendarImportResult()
        for event in events:
            event_id = event.get("id")
            if event_id and event_id in existing:
                result.skipped += 1
                continue

            try:
                task = event_to_task(event, user_id)
            except ValueError as e:
                logger.warning(f"Skipping calendar event {event_id} for user {user_id}: {e}")
                result.warnings.append(f"Calendar event {event_id} could not be imported")
                continue

            task = await self.task_store.create_task(task)
            if event_id:
                existing.add(event_id)
            result.tasks.append(task)
            result.estimated_xp[task.id] = calculate_category_xp(task.category, task.duration_minutes)

        logger.info(
            f"Imported {len(result.tasks)} calendar events for user {user_id} "
            f"({result.skipped} already linked, {len(result.warnings)} invalid)"
        )
        return result

    async def _edit_fields(self, task_id: str, fields: Dict[str, Any]) -> Task:
        """Merge fields onto the stored task and save it against its version"""
        current = await self.get_task(task_id)
        try:
            edited = Task.model_validate({**current.model_dump(), **fields})
        except pydantic.ValidationError as e:
            raise to_validation_error(e, user_id=current.user_id) from e
        return await self.task_store.save_task(edited)

    async def _sync_calendar(self, task: Task, warnings: List[str]) -> Task:
        """Push a task to the calendar; record the event id or a warning"""
        try:
            event_id = await self.calendar.sync_event(task)
        except SyncFailure as e:
            logger.warning(f"Calendar sync failed for task {task.id}; keeping saved state")
            warnings.append(e.user_message)
            return task

        if event_id and event_id != task.google_event_id:
            linked = await self.task_store.set_event_id(task.id, event_id)
            if linked is None:
                logger.warning(f"Task {task.id} was deleted before its event {event_id} was linked")
                return task
            task = linked
        return task
