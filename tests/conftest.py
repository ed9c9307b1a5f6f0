import os

os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["DB_URL"] = "sqlite+aiosqlite://"
os.environ["INDEXING_WORKER_ENABLED"] = "false"
os.environ["INDEX_ON_MUTATION"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401
from app.core.database import Base, get_db
from app.core.events import event_bus
from app.core.redis import redis_client, token_store
from app.core.security import create_access_token
from app.main import app
from app.schemas.user import CurrentUser, UserRole
from app.services.cache_invalidation import register_cache_subscribers

# Smallest valid PDF-looking payload accepted by the signature check
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"


@pytest.fixture
async def engine(tmp_path):
    # File database so the worker and request sessions get separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'content.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
async def cache():
    """Shared RedisClient backed by fakeredis"""
    redis_client.redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    redis_client.stats.reset()
    yield redis_client
    await redis_client.redis.flushall()
    redis_client.redis = None


@pytest.fixture(autouse=True)
async def tokens():
    """Download token store on its own fakeredis database"""
    token_store.redis = fakeredis.FakeAsyncRedis(db=1, decode_responses=True)
    yield token_store
    await token_store.redis.flushdb()
    token_store.redis = None


@pytest.fixture(autouse=True)
def events():
    event_bus.clear()
    register_cache_subscribers(event_bus)
    yield event_bus
    event_bus.clear()


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user_id: int = 1, role: UserRole = UserRole.CUSTOMER) -> dict:
    token = create_access_token(user_id, role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    return auth_headers(1, UserRole.CUSTOMER)


@pytest.fixture
def admin_headers():
    return auth_headers(2, UserRole.ADMIN)


@pytest.fixture
def dev_headers():
    return auth_headers(3, UserRole.DEV)


@pytest.fixture
def customer():
    return CurrentUser(id=1, role=UserRole.CUSTOMER)


@pytest.fixture
def admin():
    return CurrentUser(id=2, role=UserRole.ADMIN)
