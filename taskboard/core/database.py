# taskboard/core/database.py
from typing import AsyncIterator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from taskboard.core.config import settings
from taskboard.db.base import Base

database_url = settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    # SQLite uses a single-file pool; the sizing knobs only apply to server databases
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_timeout": 60,
        "pool_recycle": 3600,  # Recycle connections every hour
        "pool_pre_ping": True,
    }


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _register_sqlite_functions(dbapi_connection, connection_record) -> None:
    # Built-in lower() only folds ASCII letters
    dbapi_connection.create_function("lower", 1, _unicode_lower)


def build_engine(url: str, **options) -> AsyncEngine:
    """Create an async engine; SQLite connections get a Unicode-aware lower()"""
    async_engine = create_async_engine(url, echo=settings.DATABASE_ECHO, future=True, **options)
    if async_engine.dialect.name == "sqlite":
        event.listen(async_engine.sync_engine, "connect", _register_sqlite_functions)
    return async_engine


engine = build_engine(database_url, **_engine_options(database_url))

async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

async def get_async_session() -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as session:
        yield session

async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables that do not exist yet"""
    # Import models so their tables are registered on Base.metadata
    import taskboard.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
