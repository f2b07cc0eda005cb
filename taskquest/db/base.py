"""Storage interfaces used by the progression engine and services"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from taskquest.exceptions import ConcurrencyConflict
from taskquest.models.progress import UserProgress
from taskquest.models.task import Task
from taskquest.models.user import UserProfile

logger = logging.getLogger(__name__)


class TaskStore(ABC):
    """
    Task persistence boundary

    `save_task` is a compare-and-swap on `Task.version`: it succeeds only when
    the stored row still has the version the caller read, bumps the version,
    and raises ConcurrencyConflict otherwise. It never writes
    `google_event_id`; that column belongs to `set_event_id`.
    """

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        """Insert a new task"""

    @abstractmethod
    async def find_task(self, task_id: str) -> Optional[Task]:
        """Task by id, or None"""

    @abstractmethod
    async def save_task(self, task: Task) -> Task:
        """
        Overwrite an existing task if its version is unchanged

        Raises:
            RecordNotFoundError: if the task does not exist
            ConcurrencyConflict: if the stored version differs from `task.version`
        """

    @abstractmethod
    async def set_event_id(self, task_id: str, event_id: str) -> Optional[Task]:
        """Store the calendar event id only; returns the current task, or None if it is gone"""

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        """Delete a task; False when it did not exist"""

    @abstractmethod
    async def list_tasks(self, user_id: str) -> List[Task]:
        """All tasks of a user ordered by start time"""

    @abstractmethod
    async def list_completed_tasks(self, user_id: str) -> List[Task]:
        """Completed tasks of a user, most recent completion first"""

    @abstractmethod
    async def delete_user_tasks(self, user_id: str) -> int:
        """Delete every task of a user; returns the number deleted"""


class ProgressStore(ABC):
    """
    UserProgress persistence boundary

    `save_progress` is a compare-and-swap on `version`: it succeeds only when
    the stored version equals `expected_version`, bumps the version, and
    raises ConcurrencyConflict otherwise.
    """

    @abstractmethod
    async def get_or_create_progress(self, user_id: str) -> UserProgress:
        """Progress for a user, created at 0 XP when missing"""

    @abstractmethod
    async def save_progress(self, progress: UserProgress, expected_version: int) -> UserProgress:
        """Atomically replace progress; returns the stored record with its new version"""

    @abstractmethod
    async def delete_progress(self, user_id: str) -> bool:
        """Delete progress on account deletion; False when none existed"""

    @abstractmethod
    async def list_progress(self, limit: int = 10) -> List[UserProgress]:
        """Progress records ordered by XP, highest first"""


class UserStore(ABC):
    """User profile persistence boundary"""

    @abstractmethod
    async def find_user(self, user_id: str) -> Optional[UserProfile]:
        """Profile by user id, or None"""

    @abstractmethod
    async def get_or_create_user(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        """Existing profile, or `profile` inserted; the flag is True when created"""

    @abstractmethod
    async def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[UserProfile]:
        """Apply profile fields; None when the user does not exist"""

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Delete a profile; False when none existed"""


class CompletionWriter(ABC):
    """
    Writes a task and its owner's progress as one unit

    Either both records are stored or neither is. The task write is checked
    against `task.version` and the progress write against `expected_version`.
    """

    @abstractmethod
    async def write(
        self,
        original_task: Task,
        updated_task: Task,
        updated_progress: UserProgress,
        expected_version: int,
    ) -> Tuple[Task, UserProgress]:
        """
        Raises:
            ConcurrencyConflict: another writer changed the task or the progress
            PersistenceFailure: a store write failed
        """


class SequentialCompletionWriter(CompletionWriter):
    """
    For stores without shared transactions

    The task is saved first, then progress. When the progress write fails the
    task is restored, but only if the stored row is still the one written
    here; a row that has moved on belongs to another writer and is left alone.
    """

    def __init__(self, task_store: TaskStore, progress_store: ProgressStore):
        self.task_store = task_store
        self.progress_store = progress_store

    async def write(
        self,
        original_task: Task,
        updated_task: Task,
        updated_progress: UserProgress,
        expected_version: int,
    ) -> Tuple[Task, UserProgress]:
        saved_task = await self.task_store.save_task(updated_task)
        try:
            saved_progress = await self.progress_store.save_progress(updated_progress, expected_version)
        except Exception as e:
            logger.warning(
                f"Progress write failed for user {original_task.user_id} "
                f"({type(e).__name__}); restoring task {original_task.id}"
            )
            restore = original_task.model_copy(update={"version": saved_task.version})
            try:
                await self.task_store.save_task(restore)
            except ConcurrencyConflict:
                logger.error(
                    f"Task {original_task.id} changed after this write; not restoring it"
                )
            raise
        return saved_task, saved_progress
