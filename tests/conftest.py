"""Shared test fixtures for StorageHub."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storagehub.config import Settings
from storagehub.database import init_schema
from storagehub.hub import StorageHub
from storagehub.main import create_app
from storagehub.services.record_store import RecordStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_BASE_URL = "https://storage.example.com/upload"
TEST_API_KEY = "test-api-key"
START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def session_granted(session_id: str) -> httpx.Response:
    """Successful session-initiation response."""
    return httpx.Response(
        200,
        json={"success": True, "statusCode": 200, "data": [{"id": session_id}]},
    )


def resume_incomplete(upper: int) -> httpx.Response:
    """308 response acknowledging bytes ``0..upper`` inclusive."""
    return httpx.Response(308, headers={"Range": f"bytes=0-{upper}"})


class FakeUploadServer:
    """Scripted upload endpoint for ``httpx.MockTransport``.

    Responses are consumed in order per method; an exhausted script answers
    500. Exceptions in a script are raised instead of answering.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.post_script: list[httpx.Response | Exception] = []
        self.put_script: list[httpx.Response | Exception] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.post_script if request.method == "POST" else self.put_script
        if not script:
            return httpx.Response(500)
        item = script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), follow_redirects=False
        )

    @property
    def methods(self) -> list[str]:
        return [r.method for r in self.requests]

    def puts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "_env_file": None,
        "debug": True,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        "api_base_url": TEST_BASE_URL,
        "api_key": TEST_API_KEY,
        "chunk_size_bytes": 89000,
        "error_threshold": 3,
        "retry_delay_seconds": 900,
        "sync_on_add": False,
        "sync_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


@asynccontextmanager
async def create_test_client(
    settings: Settings, upload_client: httpx.AsyncClient | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan because
    ASGITransport does not trigger it.
    """
    app = create_app(settings)
    hub = StorageHub(settings, client=upload_client)
    await hub.open()
    app.state.hub = hub

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await hub.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    return make_settings(tmp_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upload_server() -> FakeUploadServer:
    return FakeUploadServer()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def record_store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    return RecordStore(session_factory)


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """A 200000-byte local file with position-dependent content."""
    path = tmp_path / "photo.jpg"
    path.write_bytes(bytes(i % 251 for i in range(200_000)))
    return path
