"""Shared fixtures for API integration tests"""
import pytest
import httpx
from typing import AsyncGenerator, Dict
from uuid import uuid4

from progress_engine import config
from progress_engine.api.middleware import limiter
from progress_engine.api.server import app
from progress_engine.db.memory_store import InMemoryProgressStore
from progress_engine.services.container import init_container, reset_container


@pytest.fixture
def auth_headers(test_api_key: str, monkeypatch) -> Dict[str, str]:
    """Valid authentication headers"""
    monkeypatch.setattr(config, "API_KEYS", [test_api_key])
    return {"Authorization": f"Bearer {test_api_key}"}


@pytest.fixture
async def api_client(auth_headers) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    In-process client against the FastAPI app

    ASGITransport does not run the lifespan, so the container is wired here
    with a fresh in-memory store.
    """
    init_container(InMemoryProgressStore())
    limiter.reset()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0
    ) as client:
        yield client
    reset_container()


@pytest.fixture
def unique_user_id() -> str:
    """Generate unique user ID for test isolation"""
    return f"test_user_{uuid4().hex[:12]}"
