# top2000_auth/app/db/session.py
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

_async_engine: Optional[AsyncEngine] = None
_AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(db_url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Cria uma engine async para a URL dada.
    O driver async vem da própria URL ("postgresql+asyncpg://...", "sqlite+aiosqlite:///...").
    """
    connect_args = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        # Escritores concorrentes esperam o lock em vez de falhar na hora
        connect_args["timeout"] = 30
    engine = create_async_engine(db_url, pool_pre_ping=True, echo=echo, connect_args=connect_args)

    if is_sqlite:
        # SQLite só respeita FOREIGN KEY com o pragma ligado em cada conexão
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine() -> AsyncEngine:
    """Creates the engine if it doesn't exist yet."""
    global _async_engine
    if _async_engine is None:
        _async_engine = build_engine(settings.DATABASE_URL)
    return _async_engine


def get_session_local() -> async_sessionmaker[AsyncSession]:
    """Creates the session factory if it doesn't exist yet."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = build_session_factory(get_async_engine())
    return _AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    SessionLocal = get_session_local()
    async with SessionLocal() as db:
        yield db


async def dispose_engine() -> None:
    global _async_engine, _AsyncSessionLocal
    if _async_engine:
        await _async_engine.dispose()
        _async_engine = None
        _AsyncSessionLocal = None
