"""Pytest configuration and fixtures for the backup service tests.

Provides an in-memory SQLite database, an in-memory object store, a
stand-in Redis, authenticated HTTP clients and customer factories.
"""

import fnmatch
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.utils.cache as cache_module
from app.auth.deps import CurrentUser
from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import Customer, StepData
from app.storage.adapters import ObjectInfo, ObjectStorage, StoredObject, get_storage
from app.storage.references import LegacyUrl, ReferencePatterns, parse_reference

WORKSPACE_ID = "ws-sunrise"
OTHER_WORKSPACE_ID = "ws-other"

R2_HOST = "acct.r2.cloudflarestorage.com"
LEGACY_HOST = "abc.public.blob.vercel-storage.com"


# ── Test doubles ─────────────────────────────────────────────────

class InMemoryStorage(ObjectStorage):
    """Object store keyed the same way DocumentStorage resolves references.

    Deleting a missing object reports failure, and references listed in
    `broken` raise on every call.
    """

    def __init__(self):
        self.objects: dict[str, StoredObject] = {}
        self.broken: set[str] = set()
        self.deleted: list[str] = []
        self.patterns = ReferencePatterns.from_settings()

    def _key(self, reference: str) -> str:
        if reference in self.broken:
            raise ConnectionError(f"storage unreachable for {reference}")
        ref = parse_reference(reference, self.patterns)
        return ref.url if isinstance(ref, LegacyUrl) else ref.key

    def put(
        self,
        reference: str,
        content: bytes,
        content_type: str = "application/pdf",
        filename: str | None = None,
    ) -> None:
        ref = parse_reference(reference, self.patterns)
        key = ref.url if isinstance(ref, LegacyUrl) else ref.key
        self.objects[key] = StoredObject(
            content=content,
            filename=filename or ref.filename,
            content_type=content_type,
        )

    async def head_object(self, reference: str) -> int | None:
        stored = self.objects.get(self._key(reference))
        return len(stored.content) if stored else None

    async def get_object(self, reference: str) -> StoredObject | None:
        return self.objects.get(self._key(reference))

    async def delete_object(self, reference: str) -> bool:
        key = self._key(reference)
        if key not in self.objects:
            return False
        del self.objects[key]
        self.deleted.append(reference)
        return True

    async def list_objects(self, prefix: str) -> list[ObjectInfo]:
        return [
            ObjectInfo(key=key, size=len(obj.content))
            for key, obj in sorted(self.objects.items())
            if key.startswith(prefix)
        ]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache helpers."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    async def set(self, key, value):
        self.store[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


# ── Storage & cache ──────────────────────────────────────────────

@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()

    async def _get_redis():
        return fake

    monkeypatch.setattr(cache_module, "get_redis", _get_redis)
    return fake


# ── Customers ────────────────────────────────────────────────────

@pytest.fixture
def make_customer(db_session: AsyncSession):
    """Factory: persist a customer with the given step payloads."""

    async def _make(
        name: str = "Ravi Kumar",
        status: str = "completed",
        workspace_id: str = WORKSPACE_ID,
        steps: dict[int, dict] | None = None,
        **fields,
    ) -> Customer:
        customer = Customer(
            workspace_id=workspace_id,
            name=name,
            status=status,
            type=fields.pop("type", "finance"),
            phone=fields.pop("phone", "9876543210"),
            created_at=fields.pop("created_at", datetime(2025, 1, 15, 10, 30)),
            **fields,
        )
        db_session.add(customer)
        await db_session.flush()
        for number, data in (steps or {}).items():
            db_session.add(
                StepData(
                    customer_id=customer.id,
                    workspace_id=workspace_id,
                    step_number=number,
                    data=data,
                )
            )
        await db_session.commit()
        return customer

    return _make


# ── Auth ─────────────────────────────────────────────────────────

@pytest.fixture
def admin_user() -> CurrentUser:
    return CurrentUser(id="user-1", username="priya", role="admin", workspace_id=WORKSPACE_ID)


def _token_for(user: CurrentUser) -> str:
    return create_access_token(
        user_id=user.id,
        username=user.username,
        role=user.role,
        workspace_id=user.workspace_id,
    )


@pytest.fixture
def auth_headers(admin_user: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {_token_for(admin_user)}"}


@pytest.fixture
def employee_headers() -> dict:
    employee = CurrentUser(id="user-2", username="arun", role="employee", workspace_id=WORKSPACE_ID)
    return {"Authorization": f"Bearer {_token_for(employee)}"}


@pytest.fixture
def other_workspace_headers() -> dict:
    admin = CurrentUser(id="user-3", username="meera", role="admin", workspace_id=OTHER_WORKSPACE_ID)
    return {"Authorization": f"Bearer {_token_for(admin)}"}


# ── HTTP client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(db_session, storage) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database and object store overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
