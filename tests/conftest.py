"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterable
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatch

# Settings are read at import time by portal.main; configure before importing it
os.environ["PORTAL_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PORTAL_JWT_ALGORITHM"] = "HS256"
os.environ["PORTAL_JWT_SECRET"] = "test-secret-with-enough-length-for-hs256"
os.environ["PORTAL_STORAGE_PUBLIC_BASE_URL"] = "https://files.test"
os.environ["PORTAL_LOG_FORMAT"] = "console"

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal, load_principal
from portal.auth.jwt import create_access_token, reset_keys
from portal.config import get_settings
from portal.database import close_db, get_engine, get_session_factory, init_db
from portal.db.base import Base
from portal.db.models import Challenge, User, UserCategory, UserCategoryAssignment
from portal.errors import ExternalIOError
from portal.gamification.storage import BaseStorageProvider, get_storage, upload_prefix
from portal.main import create_app

get_settings.cache_clear()
reset_keys()


class RecordingStorage(BaseStorageProvider):
    """In-memory object store that records deletions and can fail on chosen URLs."""

    def __init__(self, fail_urls: Iterable[str] = ()) -> None:
        super().__init__("https://files.test")
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_urls = set(fail_urls)

    async def store(self, data: bytes, *, filename: str, prefix: str, content_type: str | None = None) -> str:
        url = self.url_for(self.new_key(filename, prefix))
        self.objects[url] = data
        return url

    async def delete(self, url: str) -> None:
        if url in self.fail_urls:
            raise ExternalIOError(f"Could not delete {url}: simulated outage")
        self.objects.pop(url, None)
        self.deleted.append(url)


def stored_url(challenge_id: int, user: User, name: str) -> str:
    """URL of a file ``user`` uploaded for a challenge, as RecordingStorage would hand it out."""
    return f"https://files.test/{upload_prefix(challenge_id, user.id)}/{name}"


class InMemoryRedis:
    """The slice of the redis.asyncio client the ranking cache uses."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value

    async def scan_iter(self, match: str = "*"):
        for key in list(self.data):
            if fnmatch(key, match):
                yield key

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.data.pop(key, None) is not None)


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory schema per test."""
    await init_db("sqlite+aiosqlite://")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for seeding and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def app(storage: RecordingStorage) -> FastAPI:
    application = create_app()
    application.dependency_overrides[get_storage] = lambda: storage
    return application


@pytest_asyncio.fixture
async def client(database, app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; Redis is not initialized so caching and throttling are off."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Seed helpers ──


async def make_user(
    db: AsyncSession,
    name: str,
    role: str = "user",
    categories: Iterable[UserCategory] = (),
    is_active: bool = True,
) -> User:
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role, is_active=is_active)
    db.add(user)
    await db.flush()
    for category in categories:
        db.add(UserCategoryAssignment(user_id=user.id, category_id=category.id))
    await db.commit()
    await db.refresh(user)
    return user


async def make_category(db: AsyncSession, name: str) -> UserCategory:
    category = UserCategory(name=name)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


async def make_challenge(db: AsyncSession, creator: User | None = None, **overrides) -> Challenge:
    """Insert an open challenge directly (bypassing admin validation)."""
    now = datetime.now(timezone.utc)
    values = {
        "title": "Challenge",
        "description": "",
        "points": 50,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=1),
        "type": "periodic",
        "is_active": True,
        "evaluation_type": "none",
        "evaluation_config": None,
        "target_user_categories": [],
        "display_order": 1,
        "created_by": creator.id if creator else None,
    }
    values.update(overrides)
    challenge = Challenge(**values)
    db.add(challenge)
    await db.commit()
    await db.refresh(challenge)
    return challenge


async def principal_for(db: AsyncSession, user: User) -> Principal:
    return await load_principal(db, user)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def window(days_before: int = 1, days_after: int = 1) -> dict[str, str]:
    """startDate/endDate around now, as JSON strings."""
    now = datetime.now(timezone.utc)
    return {
        "startDate": (now - timedelta(days=days_before)).isoformat(),
        "endDate": (now + timedelta(days=days_after)).isoformat(),
    }


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, "Admin", role="admin")


@pytest_asyncio.fixture
async def alice(db_session: AsyncSession) -> User:
    return await make_user(db_session, "Alice")


@pytest_asyncio.fixture
async def bob(db_session: AsyncSession) -> User:
    return await make_user(db_session, "Bob")
