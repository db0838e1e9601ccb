import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from authz_records.application.authorization_service import AuthorizationService
from authz_records.core.database import build_engine
from authz_records.messaging.dispatcher import Dispatcher
from authz_records.storage.sql import SqlRecordStore
from tests.fakes import FakeRedis, InMemoryRecordStore, TickingClock


@pytest.fixture
def clock():
    return TickingClock()

@pytest.fixture
def memory_store():
    return InMemoryRecordStore()

@pytest.fixture
def service(memory_store, clock):
    return AuthorizationService(memory_store, clock=clock)

@pytest.fixture
def dispatcher(service):
    return Dispatcher(service)

@pytest.fixture
def fake_redis():
    return FakeRedis()

@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'records.db'}"

@pytest_asyncio.fixture(scope="function")
async def sql_engine(sqlite_url):
    engine = build_engine(sqlite_url)
    yield engine
    await engine.dispose()

@pytest_asyncio.fixture(scope="function")
async def sql_store(sql_engine):
    store = SqlRecordStore(async_sessionmaker(sql_engine, expire_on_commit=False))
    await store.create_schema()
    return store

@pytest.fixture
def sql_service(sql_store, clock):
    return AuthorizationService(sql_store, clock=clock)
