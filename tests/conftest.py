from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from typing import Final

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sqla_fluent import Client, ConnectionProvider, sqla_cache_clear
from sqla_fluent.connection import normalize_url

from .fakes import BLOG_FKS, FakeConnection, FakeProvider
from .models import (
    COMMENTS,
    FUNCTIONS,
    GAMES,
    POSTS,
    PROFILES,
    TABLES,
    Base,
    Comment,
    Game,
    Post,
    Profile,
)


DSN_ENV: Final[str] = "SQLA_FLUENT_TEST_DSN"

pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--dsn",
        default=None,
        help=f"PostgreSQL URL for integration tests (falls back to ${DSN_ENV}, then testcontainers)",
    )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()


# Unit fixtures: no database


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection(fks=BLOG_FKS)


@pytest.fixture
def fake_client(fake_connection: FakeConnection) -> Client:
    return Client(FakeProvider(fake_connection))  # type: ignore[arg-type]


# Integration fixtures: PostgreSQL


@pytest.fixture(scope="session")
def db_config(request: pytest.FixtureRequest) -> Iterator[str]:
    dsn = request.config.getoption("--dsn") or os.environ.get(DSN_ENV)
    if dsn:
        yield str(normalize_url(dsn))
        return

    try:
        from testcontainers.postgres import PostgresContainer

        pg = PostgresContainer(image="postgres:16-alpine")
        if os.name == "nt":
            pg.get_container_host_ip = lambda: "127.0.0.1"
        pg.start()
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"PostgreSQL not available: {exc}")

    try:
        host = pg.get_container_host_ip()
        yield (
            f"postgresql+psycopg://{pg.username}:{pg.password}"
            f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
        )
    finally:
        pg.stop()


@pytest.fixture(scope="session")
async def engine(db_config: str) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(db_config, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        for ddl in FUNCTIONS:
            await conn.execute(sa.text(ddl))
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def seed_data(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.execute(sa.text(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE"))
        await conn.execute(sa.insert(Profile.__table__), PROFILES)
        await conn.execute(sa.insert(Post.__table__), POSTS)
        await conn.execute(sa.insert(Comment.__table__), COMMENTS)
        await conn.execute(sa.insert(Game.__table__), GAMES)
        for table in TABLES:
            await conn.execute(
                sa.text(f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), 100)")
            )
    yield


@pytest.fixture
async def client(db_config: str, seed_data: None) -> AsyncIterator[Client]:
    async with Client(ConnectionProvider(db_config)) as db:
        yield db
