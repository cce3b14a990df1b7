"""Pytest configuration and fixtures.

Each test gets its own SQLite database file, a session factory bound to it,
and a running AccessLogWriter. HTTP tests use app.main:app through httpx's
ASGITransport with get_db / get_session_factory overridden to the test
database.
"""

from collections.abc import Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.base import Base
from app.core.database.engine import get_db, get_session_factory
from app.features.permissions.access_log import AccessLogWriter
from app.features.permissions.enums import Unidade, UserRole
from app.features.permissions.models import AccessLog
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.main import app


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def access_log(session_factory) -> AccessLogWriter:
    writer = AccessLogWriter(session_factory, retry_delay=0)
    writer.start()
    yield writer
    await writer.stop()


@pytest.fixture
def make_user(session_factory) -> Callable[..., Awaitable[User]]:
    """Factory inserting a user; defaults to an active RECEPCIONISTA of BARRA."""
    counter = {"n": 0}

    async def _make_user(
        role: UserRole = UserRole.RECEPCIONISTA,
        unidade: Unidade = Unidade.BARRA,
        unidades_acesso: list[Unidade] | None = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        acesso = unidades_acesso if unidades_acesso is not None else [unidade]
        user = User(
            email=f"user{counter['n']}@clinica.test",
            name=f"User {counter['n']}",
            role=role,
            unidade=unidade,
            unidades_acesso=[u.value for u in acesso],
            is_active=is_active,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make_user


@pytest.fixture
def fetch_logs(session_factory, access_log) -> Callable[[], Awaitable[list[AccessLog]]]:
    """Flush the writer and return every stored access log, oldest first."""

    async def _fetch() -> list[AccessLog]:
        await access_log.flush()
        async with session_factory() as session:
            result = await session.execute(select(AccessLog).order_by(AccessLog.created_at))
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
async def client(session_factory, access_log) -> AsyncClient:
    """Async HTTP client against the FastAPI app (ASGI), bound to the test database."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    previous_writer = app.state.access_log_writer
    app.state.access_log_writer = access_log

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.access_log_writer = previous_writer


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build request headers with a token for the user and an optional x-unidade."""

    def _headers(user: User, unidade: Unidade | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {create_access_token(user)}"}
        if unidade is not None:
            headers["x-unidade"] = unidade.value
        return headers

    return _headers
