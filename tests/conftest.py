import asyncio
import io
import os
from typing import Dict, Iterable, List, Optional

# Configuration is read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DB_SCHEMA"] = ""
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from passlib.hash import bcrypt
from PIL import Image
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from webtoon_api.database import Base, get_async_session
from webtoon_api.limiter import limiter
from webtoon_api.main import app
from webtoon_api.models.chapter_model import Chapter
from webtoon_api.models.user_model import Profile
from webtoon_api.models.webtoon_model import Webtoon
from webtoon_api.s3 import BlobStorage, get_storage
from webtoon_api.services.ingestion_service import UploadedFile
from webtoon_api.utils.token_utils import create_access_token


class FakeStorage(BlobStorage):
    """In-memory blob store with injectable latency and failures."""

    BASE_URL = "https://cdn.test"

    def __init__(self):
        self.objects: Dict[tuple, bytes] = {}
        self.content_types: Dict[tuple, Optional[str]] = {}
        self.removed: List[str] = []
        # payload -> seconds to wait before the upload lands
        self.delays: Dict[bytes, float] = {}
        # payloads whose upload raises
        self.failing: set = set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, bucket, path, data, content_type=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(data, 0))
            if data in self.failing:
                raise RuntimeError(f"storage rejected {path}")
            self.objects[(bucket, path)] = data
            self.content_types[(bucket, path)] = content_type
            return path
        finally:
            self.in_flight -= 1

    def get_public_url(self, bucket, path):
        if not path:
            return None
        return f"{self.BASE_URL}/{bucket}/{path}"

    async def get_signed_url(self, bucket, path, ttl):
        if not path:
            return None
        return f"{self.BASE_URL}/{bucket}/{path}?signature=test&expires={ttl}"

    async def remove(self, bucket, paths: Iterable[str]):
        for path in paths:
            self.objects.pop((bucket, path), None)
            self.removed.append(path)

    async def list(self, bucket, prefix):
        folder = prefix.rstrip("/") + "/"
        names = []
        for b, path in self.objects:
            if b == bucket and path.startswith(folder) and "/" not in path[len(folder):]:
                names.append(path[len(folder):])
        return sorted(names)

    def paths_under(self, prefix: str) -> List[str]:
        return sorted(path for _, path in self.objects if path.startswith(prefix))

    def fetch(self, url: str) -> bytes:
        """Bytes behind a URL handed out by this store."""
        bucket, path = url[len(self.BASE_URL) + 1:].split("?", 1)[0].split("/", 1)
        return self.objects[(bucket, path)]


def make_image(color=(200, 30, 30), size=(8, 12), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def page_file(data: bytes, name: str = "page.png") -> UploadedFile:
    return UploadedFile(filename=name, data=data, content_type="image/png")


@pytest.fixture(autouse=True)
def _no_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest_asyncio.fixture
async def client(session_factory, storage):
    async def _session_override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_async_session] = _session_override
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    async def _make(username: str, role: str = "user", password: str = "password123") -> Profile:
        user = Profile(username=username, password=bcrypt.hash(password), role=role)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: Profile) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture
def make_webtoon(session):
    async def _make(title: str = "Solo Climber", slug: Optional[str] = None, **kwargs) -> Webtoon:
        kwargs.setdefault("tags", [])
        webtoon = Webtoon(title=title, slug=slug or title.lower().replace(" ", "-"), **kwargs)
        session.add(webtoon)
        await session.commit()
        await session.refresh(webtoon)
        return webtoon
    return _make


@pytest.fixture
def make_chapter(session):
    async def _make(webtoon: Webtoon, number: float, required_roles=None, **kwargs) -> Chapter:
        chapter = Chapter(
            webtoon_id=webtoon.id,
            number=number,
            required_roles=list(required_roles or []),
            views=0,
            **kwargs,
        )
        session.add(chapter)
        await session.commit()
        await session.refresh(chapter)
        return chapter
    return _make
