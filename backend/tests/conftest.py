import asyncio
import os
import tempfile

# must be set before medtrack.config is imported
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="medtrack-uploads-"))
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from medtrack.api.middleware import limiter  # noqa: E402
from medtrack.db import Base, enable_sqlite_foreign_keys, get_db  # noqa: E402
from medtrack.main import app  # noqa: E402
from medtrack.seed import ADMIN_NAME, ADMIN_PASSWORD, seed_admin, seed_roles  # noqa: E402
from medtrack.services.media_store import MediaStore, get_media_store  # noqa: E402


async def build_database(path):
    # NullPool: TestClient runs every request on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        await seed_roles(session)
        await seed_admin(session)
        await session.commit()
    return engine, factory


@pytest.fixture
def database(tmp_path):
    """Session factory over a fresh, seeded SQLite file (sync tests)."""
    engine, factory = asyncio.run(build_database(tmp_path / "medtrack.db"))
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
async def sessions(tmp_path):
    """Same as `database`, for async service tests."""
    engine, factory = await build_database(tmp_path / "medtrack.db")
    yield factory
    await engine.dispose()


@pytest.fixture
def media(tmp_path):
    return MediaStore(directory=str(tmp_path / "uploads"))


@pytest.fixture
def client(database, media):
    async def override_get_db():
        async with database() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_media_store] = lambda: media
    # every test starts with a full request budget
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, name, password):
    res = client.post("/api/auth/login", json={"name": name, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["data"]


@pytest.fixture
def admin_headers(client):
    return auth(login(client, ADMIN_NAME, ADMIN_PASSWORD)["token"])


@pytest.fixture
def make_patient(client):
    """Register a patient and log them in; returns (user id, auth headers)."""
    counter = {"n": 0}

    def _make(name=None, password="secret"):
        counter["n"] += 1
        name = name or f"patient{counter['n']}"
        res = client.post(
            "/api/auth/register",
            json={"name": name, "password": password, "noHp": f"08110000{counter['n']:04d}"},
        )
        assert res.status_code == 201, res.text
        data = login(client, name, password)
        return data["user"]["id"], auth(data["token"])

    return _make


@pytest.fixture
def make_medicine(client, admin_headers):
    def _make(name="Paracetamol", stock=20):
        res = client.post(
            "/api/medicines", data={"name": name, "stock": str(stock)}, headers=admin_headers
        )
        assert res.status_code == 201, res.text
        return res.json()["data"]["id"]

    return _make
