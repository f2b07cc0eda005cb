"""Fixtures for API tests (in-process ASGI client)"""
import httpx
import pytest
import pytest_asyncio

from taskquest import config
from taskquest.api.middleware import limiter
from taskquest.api.server import app
from taskquest.db.memory import InMemoryProgressStore, InMemoryTaskStore, InMemoryUserStore
from taskquest.services.container import init_container, reset_container

API_KEY = "test_key_123"


@pytest.fixture
def headers():
    return {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def container(monkeypatch):
    """Memory-backed container with one configured API key"""
    monkeypatch.setattr(config, "API_KEYS", [API_KEY])
    monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
    monkeypatch.setattr(limiter, "enabled", False)
    container = init_container(InMemoryTaskStore(), InMemoryProgressStore(), InMemoryUserStore())
    yield container
    reset_container()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(container):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
