"""
PostgreSQL stores

Tables are created by migrations/001_initial.sql. Task and progress writes
are single UPDATEs guarded by the row's version column, so a concurrent
writer in another process turns into ConcurrencyConflict instead of a lost
update. PostgresCompletionWriter runs the task and progress UPDATEs on one
connection and commits them together.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg.types.json import Jsonb

from taskquest.db.base import CompletionWriter, ProgressStore, TaskStore, UserStore
from taskquest.db.connection import Database
from taskquest.exceptions import (
    ConcurrencyConflict,
    DatabaseError,
    RecordNotFoundError,
    wrap_external_exception,
)
from taskquest.models.progress import UserProgress
from taskquest.models.task import Task
from taskquest.models.user import UserProfile

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id, user_id, title, description, category, duration_minutes, priority, "
    "start_time, end_time, completed, completed_at, xp_value, google_event_id, "
    "version, created_at, updated_at"
)

PROGRESS_COLUMNS = (
    "user_id, xp, level, streak, tasks_completed, last_activity_date, "
    "achievements, version, created_at, updated_at"
)

USER_COLUMNS = "user_id, name, email, created_at, updated_at"


def _task_params(task: Task) -> tuple:
    return (
        task.user_id,
        task.title,
        task.description,
        task.category,
        task.duration_minutes,
        task.priority.value,
        task.start_time,
        task.end_time,
        task.completed,
        task.completed_at,
        task.xp_value,
    )


def _progress_from_row(row: dict) -> UserProgress:
    return UserProgress.model_validate({**row, "achievements": row["achievements"] or []})


async def _update_task(cur, task: Task) -> Optional[dict]:
    """Versioned task UPDATE; None when the id or version did not match"""
    await cur.execute(
        f"""
        UPDATE tasks
        SET user_id = %s,
            title = %s,
            description = %s,
            category = %s,
            duration_minutes = %s,
            priority = %s,
            start_time = %s,
            end_time = %s,
            completed = %s,
            completed_at = %s,
            xp_value = %s,
            version = version + 1,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = %s AND version = %s
        RETURNING {TASK_COLUMNS}
        """,
        _task_params(task) + (task.id, task.version)
    )
    return await cur.fetchone()


async def _task_write_error(cur, task: Task) -> DatabaseError:
    await cur.execute("SELECT version FROM tasks WHERE id = %s", (task.id,))
    current = await cur.fetchone()
    if not current:
        return RecordNotFoundError(f"Task {task.id} not found", record_type="Task", record_id=task.id)
    return ConcurrencyConflict(
        f"Task {task.id} changed concurrently",
        expected_version=task.version,
        actual_version=current["version"],
        user_id=task.user_id,
        operation="save_task",
    )


async def _update_progress(cur, progress: UserProgress, expected_version: int) -> Optional[dict]:
    achievements = [a.model_dump(mode="json") for a in progress.achievements]
    await cur.execute(
        f"""
        UPDATE user_progress
        SET xp = %s,
            level = %s,
            streak = %s,
            tasks_completed = %s,
            last_activity_date = %s,
            achievements = %s,
            version = version + 1,
            updated_at = CURRENT_TIMESTAMP
        WHERE user_id = %s AND version = %s
        RETURNING {PROGRESS_COLUMNS}
        """,
        (
            progress.xp,
            progress.level,
            progress.streak,
            progress.tasks_completed,
            progress.last_activity_date,
            Jsonb(achievements),
            progress.user_id,
            expected_version,
        )
    )
    return await cur.fetchone()


async def _progress_conflict(cur, progress: UserProgress, expected_version: int) -> ConcurrencyConflict:
    await cur.execute(
        "SELECT version FROM user_progress WHERE user_id = %s",
        (progress.user_id,)
    )
    current = await cur.fetchone()
    return ConcurrencyConflict(
        f"Progress for user {progress.user_id} changed concurrently",
        expected_version=expected_version,
        actual_version=current["version"] if current else None,
        user_id=progress.user_id,
        operation="save_progress",
    )


class PostgresTaskStore(TaskStore):
    """Task store backed by the `tasks` table"""

    def __init__(self, database: Database):
        self.db = database

    async def create_task(self, task: Task) -> Task:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO tasks (user_id, title, description, category, duration_minutes,
                                           priority, start_time, end_time, completed, completed_at,
                                           xp_value, google_event_id, version, id,
                                           created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {TASK_COLUMNS}
                        """,
                        _task_params(task) + (
                            task.google_event_id, task.version, task.id, task.created_at, task.updated_at
                        )
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="create_task", user_id=task.user_id)

        logger.info(f"Created task {task.id} for user {task.user_id}")
        return Task.model_validate(row)

    async def find_task(self, task_id: str) -> Optional[Task]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = %s",
                        (task_id,)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="find_task", context={"task_id": task_id})

        return Task.model_validate(row) if row else None

    async def save_task(self, task: Task) -> Task:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    row = await _update_task(cur, task)
                    if not row:
                        await conn.rollback()
                        raise await _task_write_error(cur, task)
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="save_task", user_id=task.user_id)

        return Task.model_validate(row)

    async def set_event_id(self, task_id: str, event_id: str) -> Optional[Task]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        UPDATE tasks SET google_event_id = %s
                        WHERE id = %s
                        RETURNING {TASK_COLUMNS}
                        """,
                        (event_id, task_id)
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="set_event_id", context={"task_id": task_id})

        return Task.model_validate(row) if row else None

    async def delete_task(self, task_id: str) -> bool:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM tasks WHERE id = %s", (task_id,))
                    deleted = cur.rowcount
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="delete_task", context={"task_id": task_id})

        return deleted > 0

    async def list_tasks(self, user_id: str) -> List[Task]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {TASK_COLUMNS} FROM tasks WHERE user_id = %s ORDER BY start_time",
                        (user_id,)
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_tasks", user_id=user_id)

        return [Task.model_validate(row) for row in rows]

    async def list_completed_tasks(self, user_id: str) -> List[Task]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        SELECT {TASK_COLUMNS} FROM tasks
                        WHERE user_id = %s AND completed AND completed_at IS NOT NULL
                        ORDER BY completed_at DESC
                        """,
                        (user_id,)
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_completed_tasks", user_id=user_id)

        return [Task.model_validate(row) for row in rows]

    async def delete_user_tasks(self, user_id: str) -> int:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM tasks WHERE user_id = %s", (user_id,))
                    deleted = cur.rowcount
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="delete_user_tasks", user_id=user_id)

        return deleted


class PostgresProgressStore(ProgressStore):
    """Progress store backed by the `user_progress` table"""

    def __init__(self, database: Database):
        self.db = database

    async def get_or_create_progress(self, user_id: str) -> UserProgress:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {PROGRESS_COLUMNS} FROM user_progress WHERE user_id = %s",
                        (user_id,)
                    )
                    row = await cur.fetchone()

                    if not row:
                        # Concurrent creators race on the primary key; the loser re-reads
                        await cur.execute(
                            """
                            INSERT INTO user_progress (user_id)
                            VALUES (%s)
                            ON CONFLICT (user_id) DO NOTHING
                            """,
                            (user_id,)
                        )
                        await cur.execute(
                            f"SELECT {PROGRESS_COLUMNS} FROM user_progress WHERE user_id = %s",
                            (user_id,)
                        )
                        row = await cur.fetchone()
                        await conn.commit()
                        logger.info(f"Created new progress record for user {user_id}")
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="get_or_create_progress", user_id=user_id)

        return _progress_from_row(row)

    async def save_progress(self, progress: UserProgress, expected_version: int) -> UserProgress:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    row = await _update_progress(cur, progress, expected_version)
                    if not row:
                        await conn.rollback()
                        raise await _progress_conflict(cur, progress, expected_version)
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="save_progress", user_id=progress.user_id)

        return _progress_from_row(row)

    async def delete_progress(self, user_id: str) -> bool:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM user_progress WHERE user_id = %s", (user_id,))
                    deleted = cur.rowcount
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="delete_progress", user_id=user_id)

        return deleted > 0

    async def list_progress(self, limit: int = 10) -> List[UserProgress]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {PROGRESS_COLUMNS} FROM user_progress ORDER BY xp DESC LIMIT %s",
                        (limit,)
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_progress")

        return [_progress_from_row(row) for row in rows]


class PostgresUserStore(UserStore):
    """Profile store backed by the `users` table"""

    def __init__(self, database: Database):
        self.db = database

    async def find_user(self, user_id: str) -> Optional[UserProfile]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {USER_COLUMNS} FROM users WHERE user_id = %s",
                        (user_id,)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="find_user", user_id=user_id)

        return UserProfile.model_validate(row) if row else None

    async def get_or_create_user(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO users (user_id, name, email, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s)
                        ON CONFLICT (user_id) DO NOTHING
                        RETURNING {USER_COLUMNS}
                        """,
                        (profile.user_id, profile.name, profile.email,
                         profile.created_at, profile.updated_at)
                    )
                    row = await cur.fetchone()
                    created = row is not None
                    if not created:
                        await cur.execute(
                            f"SELECT {USER_COLUMNS} FROM users WHERE user_id = %s",
                            (profile.user_id,)
                        )
                        row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="get_or_create_user", user_id=profile.user_id)

        if created:
            logger.info(f"Created user {profile.user_id}")
        return UserProfile.model_validate(row), created

    async def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[UserProfile]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        UPDATE users
                        SET name = COALESCE(%s, name),
                            email = COALESCE(%s, email),
                            updated_at = CURRENT_TIMESTAMP
                        WHERE user_id = %s
                        RETURNING {USER_COLUMNS}
                        """,
                        (fields.get("name"), fields.get("email"), user_id)
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="update_user", user_id=user_id)

        return UserProfile.model_validate(row) if row else None

    async def delete_user(self, user_id: str) -> bool:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM users WHERE user_id = %s", (user_id,))
                    deleted = cur.rowcount
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="delete_user", user_id=user_id)

        return deleted > 0


class PostgresCompletionWriter(CompletionWriter):
    """Task and progress UPDATEs in one transaction; a missed version rolls both back"""

    def __init__(self, database: Database):
        self.db = database

    async def write(
        self,
        original_task: Task,
        updated_task: Task,
        updated_progress: UserProgress,
        expected_version: int,
    ) -> Tuple[Task, UserProgress]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    task_row = await _update_task(cur, updated_task)
                    if not task_row:
                        await conn.rollback()
                        raise await _task_write_error(cur, updated_task)

                    progress_row = await _update_progress(cur, updated_progress, expected_version)
                    if not progress_row:
                        await conn.rollback()
                        raise await _progress_conflict(cur, updated_progress, expected_version)

                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="write_completion", user_id=original_task.user_id)

        return Task.model_validate(task_row), _progress_from_row(progress_row)
