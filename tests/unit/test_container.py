"""Unit tests for store selection and service wiring (taskquest/services/container.py)"""
from taskquest.db.base import SequentialCompletionWriter
from taskquest.db.memory import InMemoryProgressStore, InMemoryTaskStore, InMemoryUserStore
from taskquest.db.postgres import PostgresCompletionWriter, PostgresUserStore
from taskquest.services.container import ServiceContainer, build_completion_writer, build_stores


def test_memory_backend():
    task_store, progress_store, user_store = build_stores("memory")

    assert isinstance(task_store, InMemoryTaskStore)
    assert isinstance(progress_store, InMemoryProgressStore)
    assert isinstance(user_store, InMemoryUserStore)
    assert build_completion_writer("memory") is None


def test_postgres_backend():
    _, _, user_store = build_stores("postgres")

    assert isinstance(user_store, PostgresUserStore)
    assert isinstance(build_completion_writer("postgres"), PostgresCompletionWriter)


def test_engine_falls_back_to_sequential_writer():
    container = ServiceContainer(InMemoryTaskStore(), InMemoryProgressStore(), InMemoryUserStore())

    assert isinstance(container.engine.writer, SequentialCompletionWriter)
    assert container.user_service.engine is container.engine
    assert container.task_service.engine is container.engine


def test_engine_uses_injected_writer():
    writer = PostgresCompletionWriter(database=None)
    container = ServiceContainer(
        InMemoryTaskStore(), InMemoryProgressStore(), InMemoryUserStore(), writer=writer
    )

    assert container.engine.writer is writer
