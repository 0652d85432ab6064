# Shared test fixtures
import fnmatch
import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_CONNECTION_STRING"] = "redis://localhost:1/0"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "1000000"

from sre_demo.cache.layer import CacheLayer, get_cache  # noqa: E402
from sre_demo.core.config import get_settings  # noqa: E402
from sre_demo.database import get_db  # noqa: E402
from sre_demo.main import app  # noqa: E402
from sre_demo.models import Priority, Todo, TodoMetadata  # noqa: E402
from sre_demo.services.chaos_service import ChaosState, get_chaos_state  # noqa: E402


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (the calls CacheLayer makes)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys):
        return sum(1 for key in keys if key in self.store)

    async def scan(self, cursor=0, match=None, count=None):
        keys = [k for k in self.store if match is None or fnmatch.fnmatchcase(k, match)]
        return 0, keys

    async def aclose(self):
        self.closed = True


class BrokenRedis:
    """Every call fails the way an unreachable Redis does."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

        return fail


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def cache(fake_redis):
    layer = CacheLayer(settings=get_settings(), redis=fake_redis)
    await layer.init_cache()
    return layer


@pytest_asyncio.fixture
async def broken_cache():
    layer = CacheLayer(settings=get_settings(), redis=BrokenRedis())
    await layer.init_cache()
    return layer


@pytest.fixture
def chaos_state():
    return ChaosState()


def _client(db_engine, cache_layer, chaos_state):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache_layer
    app.dependency_overrides[get_chaos_state] = lambda: chaos_state
    # Unhandled errors must come back as 500 responses, not test exceptions
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, cache, chaos_state):
    """HTTP test client with overridden DB, cache and chaos dependencies"""
    async with _client(db_engine, cache, chaos_state) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def degraded_client(db_engine, broken_cache, chaos_state):
    """HTTP test client whose Redis fails every call"""
    async with _client(db_engine, broken_cache, chaos_state) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def todo(db_session):
    """One todo with a fresh metadata row (view_count 0)"""
    item = Todo(title="Review alert thresholds", description="Quarterly review", priority=Priority.HIGH)
    item.meta = TodoMetadata(view_count=0)
    db_session.add(item)
    await db_session.commit()
    return item
