"""
Shared fixtures for Galleria tests
"""
import os

# Settings are read at import time; configure before importing the app
os.environ["GALLERY_TOKEN_SECRET"] = "test-gallery-token-secret-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_PASSWORD"] = "admin-test-password"
os.environ["ENVIRONMENT"] = "development"

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.pool import StaticPool

from galleria import database, models  # noqa: F401  (models registers the tables)
from galleria.config import settings
from galleria.database import Base, get_db
from galleria.main import create_app
from galleria.schemas import GalleryCreate
from galleria.services import galleries
from galleria.services.storage import StorageNotConfigured

ADMIN_PASSWORD = "admin-test-password"


class FakeObjectStore:
    """In-memory stand-in for S3ObjectStore with failure injection.

    `fail` holds (operation, key-suffix) pairs; "*" matches every key.
    """

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.objects = {}
        self.fail = set()
        self.calls = []
        self.presign_count = 0

    def _check(self, op: str, key: str):
        self.calls.append((op, key))
        if not self.configured:
            raise StorageNotConfigured("not configured")
        for fail_op, suffix in self.fail:
            if fail_op == op and (suffix == "*" or key.endswith(suffix)):
                raise OSError(f"simulated {op} failure for {key}")

    async def put(self, key, data, content_type):
        self._check("put", key)
        self.objects[key] = (data, content_type)

    async def get(self, key):
        self._check("get", key)
        return self.objects[key][0]

    async def delete(self, key):
        self._check("delete", key)
        self.objects.pop(key, None)

    async def copy(self, source_key, dest_key):
        self._check("copy", source_key)
        self.objects[dest_key] = self.objects[source_key]

    async def presign(self, key, expires_in):
        self._check("presign", key)
        self.presign_count += 1
        return f"https://bucket.test/{key}?expires={expires_in}&n={self.presign_count}"

    def keys_under(self, prefix: str):
        return sorted(k for k in self.objects if k.startswith(prefix))


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_image(width=100, height=100, fmt="JPEG", color="red", mode="RGB", **save_kwargs) -> bytes:
    img = Image.new(mode, (width, height), color=color)
    buf = BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


@pytest.fixture
def image_factory():
    """Factory to create encoded test images"""
    return make_image


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def engine():
    engine = database.build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return database.session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gallery_factory(db):
    def create(title="Test Gallery", is_public=True, password=None, slug=None, description=None):
        return galleries.create_gallery(
            db,
            GalleryCreate(
                title=title,
                slug=slug,
                description=description,
                is_public=is_public,
                password=password,
            ),
        )
    return create


@pytest.fixture
def app(store, session_factory):
    app = create_app(settings, store=store)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(client):
    response = client.post("/admin/login", data={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client
