"""Global test fixtures and utilities for TaskQuest tests"""
import asyncio

import pytest
from datetime import datetime, timedelta, timezone

from taskquest.db.memory import InMemoryProgressStore, InMemoryTaskStore, InMemoryUserStore
from taskquest.gamification.progression import ProgressionEngine
from taskquest.models.task import Task, TaskPriority
from taskquest.services.task_service import TaskService
from taskquest.services.user_service import UserService


# ============================================================================
# Clock Fixtures
# ============================================================================

class FixedClock:
    """Settable clock for deterministic day boundaries"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock fixed at 2024-03-10 12:00 UTC"""
    return FixedClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


# ============================================================================
# User & Task Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "auth0|test-user"


@pytest.fixture
def make_task(test_user_id):
    """Factory for pending tasks"""
    def _make(
        user_id=None,
        priority=TaskPriority.MEDIUM,
        duration_minutes=60,
        title="Write report",
        **overrides
    ) -> Task:
        start = overrides.pop("start_time", datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc))
        return Task(
            user_id=user_id or test_user_id,
            title=title,
            priority=priority,
            duration_minutes=duration_minutes,
            start_time=start,
            end_time=overrides.pop("end_time", start + timedelta(minutes=duration_minutes or 30)),
            **overrides,
        )
    return _make


# ============================================================================
# Store & Service Fixtures
# ============================================================================

@pytest.fixture
def task_store():
    return InMemoryTaskStore()


@pytest.fixture
def progress_store():
    return InMemoryProgressStore()


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def engine(task_store, progress_store, clock):
    """Progression engine over in-memory stores with a fixed clock"""
    return ProgressionEngine(task_store, progress_store, clock=clock, max_retries=3)


@pytest.fixture
def task_service(task_store, progress_store, engine):
    """TaskService with calendar sync disabled"""
    return TaskService(task_store, progress_store, engine)


@pytest.fixture
def user_service(user_store, task_store, progress_store, engine):
    return UserService(user_store, task_store, progress_store, engine)


@pytest.fixture
def stored_task(task_store, make_task):
    """Factory that creates a task in the task store"""
    async def _create(**kwargs) -> Task:
        return await task_store.create_task(make_task(**kwargs))
    return _create


# ============================================================================
# Interleaving Stores
# ============================================================================

class YieldingTaskStore(InMemoryTaskStore):
    """Suspends before every read and write so concurrent callers interleave"""

    async def find_task(self, task_id):
        await asyncio.sleep(0)
        return await super().find_task(task_id)

    async def save_task(self, task):
        await asyncio.sleep(0)
        return await super().save_task(task)

    async def set_event_id(self, task_id, event_id):
        await asyncio.sleep(0)
        return await super().set_event_id(task_id, event_id)

    async def list_completed_tasks(self, user_id):
        await asyncio.sleep(0)
        return await super().list_completed_tasks(user_id)


class YieldingProgressStore(InMemoryProgressStore):
    """Progress store that yields between read and write"""

    async def get_or_create_progress(self, user_id):
        await asyncio.sleep(0)
        return await super().get_or_create_progress(user_id)

    async def save_progress(self, progress, expected_version):
        await asyncio.sleep(0)
        return await super().save_progress(progress, expected_version)


@pytest.fixture
def yielding_task_store():
    return YieldingTaskStore()


@pytest.fixture
def yielding_progress_store():
    return YieldingProgressStore()


@pytest.fixture
def make_engine(yielding_task_store, yielding_progress_store, clock):
    """Factory for engines sharing the yielding stores, like two API processes on one database"""
    def _make(**kwargs) -> ProgressionEngine:
        return ProgressionEngine(yielding_task_store, yielding_progress_store, clock=clock, max_retries=3, **kwargs)
    return _make
