"""
In-memory stores

Used for local development and tests. Records are copied on the way in and
out so callers never share mutable state with the store.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from taskquest.db.base import ProgressStore, TaskStore, UserStore
from taskquest.exceptions import ConcurrencyConflict, RecordNotFoundError, ValidationError
from taskquest.models.progress import UserProgress
from taskquest.models.task import Task
from taskquest.models.user import UserProfile

logger = logging.getLogger(__name__)


class InMemoryTaskStore(TaskStore):
    """Dict-backed task store"""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}

    async def create_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValidationError(f"Task {task.id} already exists", field="id", value=task.id)
        self._tasks[task.id] = task.model_copy(deep=True)
        logger.debug(f"Created task {task.id} for user {task.user_id}")
        return task.model_copy(deep=True)

    async def find_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def save_task(self, task: Task) -> Task:
        current = self._tasks.get(task.id)
        if current is None:
            raise RecordNotFoundError(f"Task {task.id} not found", record_type="Task", record_id=task.id)
        if current.version != task.version:
            raise ConcurrencyConflict(
                f"Task {task.id} changed concurrently",
                expected_version=task.version,
                actual_version=current.version,
                user_id=task.user_id,
                operation="save_task",
            )

        stored = task.model_copy(
            update={
                "version": current.version + 1,
                "google_event_id": current.google_event_id,
                "updated_at": datetime.now(timezone.utc),
            },
            deep=True,
        )
        self._tasks[task.id] = stored
        return stored.model_copy(deep=True)

    async def set_event_id(self, task_id: str, event_id: str) -> Optional[Task]:
        current = self._tasks.get(task_id)
        if current is None:
            return None
        stored = current.model_copy(update={"google_event_id": event_id})
        self._tasks[task_id] = stored
        return stored.model_copy(deep=True)

    async def delete_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    async def list_tasks(self, user_id: str) -> List[Task]:
        tasks = [t for t in self._tasks.values() if t.user_id == user_id]
        tasks.sort(key=lambda t: t.start_time)
        return [t.model_copy(deep=True) for t in tasks]

    async def list_completed_tasks(self, user_id: str) -> List[Task]:
        tasks = [t for t in self._tasks.values() if t.user_id == user_id and t.completed]
        tasks.sort(key=lambda t: t.completed_at, reverse=True)
        return [t.model_copy(deep=True) for t in tasks]

    async def delete_user_tasks(self, user_id: str) -> int:
        task_ids = [task_id for task_id, t in self._tasks.items() if t.user_id == user_id]
        for task_id in task_ids:
            del self._tasks[task_id]
        return len(task_ids)


class InMemoryProgressStore(ProgressStore):
    """Dict-backed progress store with version compare-and-swap"""

    def __init__(self):
        self._progress: Dict[str, UserProgress] = {}

    async def get_or_create_progress(self, user_id: str) -> UserProgress:
        progress = self._progress.get(user_id)
        if progress is None:
            progress = UserProgress(user_id=user_id)
            self._progress[user_id] = progress
            logger.info(f"Created new progress record for user {user_id}")
        return progress.model_copy(deep=True)

    async def save_progress(self, progress: UserProgress, expected_version: int) -> UserProgress:
        current = self._progress.get(progress.user_id)
        actual_version = current.version if current else None
        if actual_version != expected_version:
            raise ConcurrencyConflict(
                f"Progress for user {progress.user_id} changed concurrently",
                expected_version=expected_version,
                actual_version=actual_version,
                user_id=progress.user_id,
                operation="save_progress",
            )

        stored = progress.model_copy(
            update={"version": expected_version + 1, "updated_at": datetime.now(timezone.utc)},
            deep=True,
        )
        self._progress[progress.user_id] = stored
        return stored.model_copy(deep=True)

    async def delete_progress(self, user_id: str) -> bool:
        return self._progress.pop(user_id, None) is not None

    async def list_progress(self, limit: int = 10) -> List[UserProgress]:
        ranked = sorted(self._progress.values(), key=lambda p: p.xp, reverse=True)
        return [p.model_copy(deep=True) for p in ranked[:limit]]


class InMemoryUserStore(UserStore):
    """Dict-backed user profile store"""

    def __init__(self):
        self._users: Dict[str, UserProfile] = {}

    async def find_user(self, user_id: str) -> Optional[UserProfile]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_or_create_user(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        existing = self._users.get(profile.user_id)
        if existing is not None:
            return existing.model_copy(deep=True), False
        self._users[profile.user_id] = profile.model_copy(deep=True)
        logger.info(f"Created user {profile.user_id}")
        return profile.model_copy(deep=True), True

    async def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[UserProfile]:
        current = self._users.get(user_id)
        if current is None:
            return None
        stored = current.model_copy(update={**fields, "updated_at": datetime.now(timezone.utc)})
        self._users[user_id] = stored
        return stored.model_copy(deep=True)

    async def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None
