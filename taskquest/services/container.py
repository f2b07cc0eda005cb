"""
Service Container - Dependency Injection Container

Simple DI container for managing service instances and their dependencies.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

from taskquest import config
from taskquest.db.base import CompletionWriter, ProgressStore, TaskStore, UserStore
from taskquest.services.calendar_sync import CalendarSync, NullCalendarSync

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure dependencies (stores, completion writer, calendar) are injected.
    """

    # Infrastructure dependencies (injected)
    task_store: TaskStore
    progress_store: ProgressStore
    user_store: UserStore
    calendar: CalendarSync = field(default_factory=NullCalendarSync)
    writer: Optional[CompletionWriter] = None

    # Services (lazy-loaded via properties)
    _engine: Optional[object] = field(default=None, init=False, repr=False)
    _task_service: Optional[object] = field(default=None, init=False, repr=False)
    _user_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def engine(self):
        """Get ProgressionEngine instance (lazy-loaded)"""
        if self._engine is None:
            from taskquest.gamification.progression import ProgressionEngine
            self._engine = ProgressionEngine(self.task_store, self.progress_store, writer=self.writer)
            logger.debug("ProgressionEngine instantiated")
        return self._engine

    @property
    def task_service(self):
        """Get TaskService instance (lazy-loaded)"""
        if self._task_service is None:
            from taskquest.services.task_service import TaskService
            self._task_service = TaskService(
                self.task_store,
                self.progress_store,
                self.engine,
                self.calendar,
            )
            logger.debug("TaskService instantiated")
        return self._task_service

    @property
    def user_service(self):
        """Get UserService instance (lazy-loaded)"""
        if self._user_service is None:
            from taskquest.services.user_service import UserService
            self._user_service = UserService(
                self.user_store,
                self.task_store,
                self.progress_store,
                self.engine,
            )
            logger.debug("UserService instantiated")
        return self._user_service


def build_stores(backend: Optional[str] = None) -> Tuple[TaskStore, ProgressStore, UserStore]:
    """
    Stores for the configured backend

    Args:
        backend: 'memory' or 'postgres' (default: STORAGE_BACKEND)
    """
    backend = backend or config.STORAGE_BACKEND
    if backend == "postgres":
        from taskquest.db.connection import db
        from taskquest.db.postgres import PostgresProgressStore, PostgresTaskStore, PostgresUserStore
        return PostgresTaskStore(db), PostgresProgressStore(db), PostgresUserStore(db)

    from taskquest.db.memory import InMemoryProgressStore, InMemoryTaskStore, InMemoryUserStore
    return InMemoryTaskStore(), InMemoryProgressStore(), InMemoryUserStore()


def build_completion_writer(backend: Optional[str] = None) -> Optional[CompletionWriter]:
    """
    Transactional completion writer for postgres

    Returns None for the memory backend, where the engine falls back to a
    SequentialCompletionWriter over its own stores.
    """
    backend = backend or config.STORAGE_BACKEND
    if backend == "postgres":
        from taskquest.db.connection import db
        from taskquest.db.postgres import PostgresCompletionWriter
        return PostgresCompletionWriter(db)
    return None


# Global container instance (initialized in the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() before using services."
        )
    return _container


def init_container(
    task_store: TaskStore,
    progress_store: ProgressStore,
    user_store: UserStore,
    calendar: Optional[CalendarSync] = None,
    writer: Optional[CompletionWriter] = None,
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after infrastructure setup.
    """
    global _container

    _container = ServiceContainer(
        task_store=task_store,
        progress_store=progress_store,
        user_store=user_store,
        calendar=calendar or NullCalendarSync(),
        writer=writer,
    )

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (shutdown and tests)"""
    global _container
    _container = None
