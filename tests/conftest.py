import io
import os
from typing import AsyncGenerator, Callable

# Settings are read at import time, so point them at throwaway locations first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.datastructures import Headers, UploadFile

from taskboard.api.dependencies import get_attachment_store
from taskboard.core.database import build_engine, get_async_session, init_db
from taskboard.core.security import create_access_token
from taskboard.main import app
from taskboard.services.task.task_service import TaskService
from taskboard.utils.file_handler import LocalAttachmentStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database for each test"""
    test_engine = build_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as db_session:
        yield db_session


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def store(upload_dir) -> LocalAttachmentStore:
    return LocalAttachmentStore(str(upload_dir))


@pytest.fixture
def task_service(session: AsyncSession, store: LocalAttachmentStore) -> TaskService:
    return TaskService(session, store)


@pytest.fixture
def make_upload() -> Callable[..., UploadFile]:
    """Build an UploadFile the way FastAPI hands it to the endpoint"""
    def _make(filename: str, content: bytes = b"hello", content_type: str = "text/plain") -> UploadFile:
        return UploadFile(
            file=io.BytesIO(content),
            filename=filename,
            headers=Headers({"content-type": content_type}),
        )
    return _make


@pytest.fixture
def stored_files(upload_dir) -> Callable[[], list]:
    """List every file currently in the upload directory"""
    def _list():
        if not upload_dir.exists():
            return []
        return sorted(path for path in upload_dir.rglob("*") if path.is_file())
    return _list


@pytest.fixture
async def client(session_maker: async_sessionmaker, store: LocalAttachmentStore) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and attachment store overridden"""
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as db_session:
            yield db_session

    app.dependency_overrides[get_async_session] = override_get_db
    app.dependency_overrides[get_attachment_store] = lambda: store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OWNER_ID)}"}


@pytest.fixture
def other_auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OTHER_OWNER_ID)}"}
