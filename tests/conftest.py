import os

# Precisa vir antes de qualquer import de `app`: settings é carregado no import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./unused-test.db")
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REFRESH_REUSE_REVOKES_ALL"] = "false"

from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from app.core.claims import utc_now
from app.core.security import AccessTokenIssuer
from app.crud.crud_user import user as crud_user
from app.db.base import Base
from app.db.session import build_engine, build_session_factory, get_db
from app.models.refresh_token import RefreshToken
from app.models.user import User  # noqa: F401
from app.schemas.user import UserCreate
from app.services.auth_service import AuthService
from app.services.refresh_token_service import RefreshTokenService

PASSWORD = "Secret123"


class FakeClock:
    """Relógio controlável; só anda quando o teste manda."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer():
    return AccessTokenIssuer(
        secret_key="unit-test-secret-key-0123456789-abcdef",
        issuer="urn:test:api",
        audience="urn:test:client",
        lifetime=timedelta(minutes=15),
    )


@pytest.fixture
def refresh_service(db, clock):
    return RefreshTokenService(db, lifetime=timedelta(hours=1), clock=clock)


@pytest.fixture
def auth_service(db, issuer, refresh_service):
    return AuthService(db, issuer=issuer, refresh_tokens=refresh_service)


@pytest.fixture
def make_user(db):
    async def _make(email: str = "user@example.com", password: str = PASSWORD, roles=None):
        return await crud_user.create(db, obj_in=UserCreate(email=email, password=password), roles=roles)
    return _make


@pytest.fixture
def count_tokens(session_factory):
    async def _count(user_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(RefreshToken)
        if user_id is not None:
            stmt = stmt.where(RefreshToken.user_id == user_id)
        async with session_factory() as session:
            return (await session.execute(stmt)).scalar_one()
    return _count


@pytest.fixture
async def client(session_factory):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
