"""
Progression Engine

Turns task completion toggles into XP, level, streak and achievement changes.

Every grant and revert is a read-modify-write of two records (the task and the
user's progress). Writes for one user are serialized by a per-user lock that
exists only while someone holds or waits on it. Both records carry a version:
the task write and the progress write are compare-and-swaps, so a second
engine or process writing the same task or user is detected instead of
overwritten.

The two writes go through a CompletionWriter, which stores both or neither.
A version conflict restarts the attempt from a fresh read; once the task has
been written by someone else the fresh read sees it and the attempt stops
with ValidationError.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from taskquest import config
from taskquest.db.base import CompletionWriter, ProgressStore, SequentialCompletionWriter, TaskStore
from taskquest.exceptions import ConcurrencyConflict, RecordNotFoundError, ValidationError
from taskquest.gamification.achievement_system import (
    CompletionContext,
    ProgressState,
    evaluate_achievements,
    format_achievement_unlock_message,
    revoke_level_achievements,
)
from taskquest.gamification.streak_system import (
    calculate_streak,
    count_completions_on,
    has_weekly_coverage,
    to_utc_date,
)
from taskquest.gamification.xp_system import apply_xp_delta, calculate_task_xp, level_for_xp
from taskquest.models.progress import ProgressionSnapshot, UserProgress
from taskquest.models.task import Task, utcnow
from taskquest.observability import metrics
from taskquest.resilience.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Delay before the first conflict retry; conflicts clear quickly
CONFLICT_BASE_DELAY = 0.05


class ProgressionEngine:
    """Grants and reverts task completions against a user's progression"""

    def __init__(
        self,
        task_store: TaskStore,
        progress_store: ProgressStore,
        clock: Callable[[], datetime] = utcnow,
        max_retries: Optional[int] = None,
        writer: Optional[CompletionWriter] = None,
    ):
        self.task_store = task_store
        self.progress_store = progress_store
        self.clock = clock
        self.max_retries = config.PROGRESS_MAX_RETRIES if max_retries is None else max_retries
        self.writer = writer or SequentialCompletionWriter(task_store, progress_store)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def grant_completion(self, user_id: str, task: Task) -> ProgressionSnapshot:
        """
        Mark a task completed and award its XP

        Args:
            user_id: Owner of the task
            task: The task to complete (re-read from the store before use)

        Returns:
            Snapshot with the XP gained and any newly unlocked achievements

        Raises:
            ValidationError: task is already completed or owned by someone else
            RecordNotFoundError: task no longer exists
            ConcurrencyConflict: progress kept changing after all retries
            PersistenceFailure: a store write failed; nothing was changed
        """
        return await self._run("grant", self._grant_once, user_id, task)

    async def revert_completion(self, user_id: str, task: Task) -> ProgressionSnapshot:
        """
        Mark a completed task pending again and take back exactly the XP it granted

        Level achievements above the new level are revoked; streak, daily and
        weekly achievements stay.

        Raises:
            ValidationError: task is not completed or owned by someone else
            RecordNotFoundError: task no longer exists
            ConcurrencyConflict: progress kept changing after all retries
            PersistenceFailure: a store write failed; nothing was changed
        """
        return await self._run("revert", self._revert_once, user_id, task)

    async def get_snapshot(self, user_id: str) -> ProgressionSnapshot:
        """Current progression for display; the streak is recomputed but not written"""
        progress = await self.progress_store.get_or_create_progress(user_id)
        completed = await self.task_store.list_completed_tasks(user_id)
        streak = calculate_streak(
            [t.completed_at for t in completed],
            to_utc_date(self.clock()),
        )
        return ProgressionSnapshot.from_progress(progress.model_copy(update={"streak": streak}))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, operation: str, attempt, user_id: str, task: Task) -> ProgressionSnapshot:
        if task.user_id != user_id:
            raise ValidationError(
                f"Task {task.id} does not belong to user {user_id}",
                field="user_id",
                value=user_id,
                user_id=user_id,
                operation=f"{operation}_completion",
            )

        start = time.perf_counter()
        metrics.progression_locks_active.inc()
        try:
            async with self._user_lock(user_id):
                snapshot = await retry_with_backoff(
                    attempt,
                    user_id,
                    task.id,
                    max_retries=self.max_retries,
                    base_delay=CONFLICT_BASE_DELAY,
                )
        except ConcurrencyConflict:
            metrics.record_progression(operation, "conflict")
            raise
        except Exception:
            metrics.record_progression(operation, "error")
            raise
        finally:
            metrics.progression_locks_active.dec()
            metrics.progression_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

        metrics.record_progression(operation, "success")
        return snapshot

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        """Per-user lock, dropped once nobody holds or waits on it"""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
            self._lock_users[user_id] = 0
        self._lock_users[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if self._lock_users[user_id] == 0:
                del self._lock_users[user_id]
                del self._locks[user_id]

    async def _load_task(self, user_id: str, task_id: str) -> Task:
        current = await self.task_store.find_task(task_id)
        if current is None:
            raise RecordNotFoundError(
                f"Task {task_id} not found",
                record_type="Task",
                record_id=task_id,
                user_id=user_id,
            )
        return current

    async def _history_without(self, user_id: str, task_id: str) -> List[datetime]:
        """Completion timestamps of the user's other completed tasks"""
        completed = await self.task_store.list_completed_tasks(user_id)
        return [t.completed_at for t in completed if t.id != task_id]

    async def _grant_once(self, user_id: str, task_id: str) -> ProgressionSnapshot:
        task = await self._load_task(user_id, task_id)
        if task.completed:
            raise ValidationError(
                f"Task {task_id} is already completed",
                field="completed",
                value=True,
                user_id=user_id,
                operation="grant_completion",
            )

        now = self.clock()
        today = to_utc_date(now)
        progress = await self.progress_store.get_or_create_progress(user_id)
        history = await self._history_without(user_id, task_id)

        xp_delta = calculate_task_xp(task.priority, task.duration_minutes)
        new_xp = apply_xp_delta(progress.xp, xp_delta)
        new_level = level_for_xp(new_xp)

        old_streak = calculate_streak(history, today)
        timeline = history + [now]
        new_streak = calculate_streak(timeline, today, credit_today=True)

        unlocked = evaluate_achievements(
            old=ProgressState(level=progress.level, streak=old_streak),
            new=ProgressState(level=new_level, streak=new_streak),
            context=CompletionContext(
                completions_today=count_completions_on(timeline, today),
                weekly_coverage=has_weekly_coverage(timeline, today),
            ),
            existing_ids=progress.achievement_ids,
            now=now,
        )

        updated_task = task.model_copy(update={
            "completed": True,
            "completed_at": now,
            "xp_value": xp_delta,
        })
        updated_progress = progress.model_copy(update={
            "xp": new_xp,
            "level": new_level,
            "streak": new_streak,
            "tasks_completed": progress.tasks_completed + 1,
            "last_activity_date": now,
            "achievements": progress.achievements + unlocked,
        })

        saved = await self._commit(task, updated_task, updated_progress, progress.version)

        metrics.xp_awarded_total.labels(priority=task.priority.value).inc(xp_delta)
        metrics.record_achievements([a.category.value for a in unlocked])
        logger.info(
            f"User {user_id} completed task {task_id}: +{xp_delta} XP "
            f"(level {progress.level} -> {new_level}, streak {new_streak})"
        )
        for achievement in unlocked:
            logger.info(f"User {user_id}: {format_achievement_unlock_message(achievement)}")

        return ProgressionSnapshot.from_progress(saved, new_achievements=unlocked, xp_delta=xp_delta)

    async def _revert_once(self, user_id: str, task_id: str) -> ProgressionSnapshot:
        task = await self._load_task(user_id, task_id)
        if not task.completed:
            raise ValidationError(
                f"Task {task_id} is not completed",
                field="completed",
                value=False,
                user_id=user_id,
                operation="revert_completion",
            )

        today = to_utc_date(self.clock())
        progress = await self.progress_store.get_or_create_progress(user_id)
        history = await self._history_without(user_id, task_id)

        new_xp = apply_xp_delta(progress.xp, -task.xp_value)
        new_level = level_for_xp(new_xp)
        new_streak = calculate_streak(history, today)
        kept, revoked = revoke_level_achievements(progress.achievements, new_level)

        updated_task = task.model_copy(update={
            "completed": False,
            "completed_at": None,
            "xp_value": 0,
        })
        updated_progress = progress.model_copy(update={
            "xp": new_xp,
            "level": new_level,
            "streak": new_streak,
            "tasks_completed": max(0, progress.tasks_completed - 1),
            "last_activity_date": max(history) if history else None,
            "achievements": kept,
        })

        saved = await self._commit(task, updated_task, updated_progress, progress.version)

        xp_delta = new_xp - progress.xp
        metrics.xp_reverted_total.inc(-xp_delta)
        if revoked:
            metrics.achievements_revoked_total.inc(len(revoked))
            logger.info(f"User {user_id} lost achievements {revoked} after dropping to level {new_level}")
        logger.info(f"User {user_id} un-completed task {task_id}: {xp_delta} XP (level {new_level})")

        return ProgressionSnapshot.from_progress(saved, revoked_achievements=revoked, xp_delta=xp_delta)

    async def _commit(
        self,
        original_task: Task,
        updated_task: Task,
        updated_progress: UserProgress,
        expected_version: int
    ) -> UserProgress:
        try:
            _, saved = await self.writer.write(
                original_task, updated_task, updated_progress, expected_version
            )
        except ConcurrencyConflict:
            metrics.progress_conflicts_total.inc()
            raise
        return saved
