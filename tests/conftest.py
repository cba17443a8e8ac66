import asyncio
import os
import tempfile
import uuid

import pytest

# Configure the app before it is imported: throwaway sqlite DB, test secret,
# seeded admin account.
_TMP = tempfile.mkdtemp(prefix="task-api-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["IMAGES_DIR"] = os.path.join(_TMP, "images")
os.environ.setdefault("SECRET_KEY", "test-signing-secret-that-is-long-enough-1234567890")
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "Adm1n!Passw0rd"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from db import Base, enable_sqlite_foreign_keys  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "P@ss1234"


@pytest.fixture(scope="session")
def client():
    """Provide a TestClient for the app (runs the lifespan: tables + admin)."""
    with TestClient(app) as c:
        yield c


def unique_name(prefix="user"):
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


@pytest.fixture
def register(client):
    """Register a user through the API; returns (username, response)."""
    def _register(username=None, password=PASSWORD, files=None, **fields):
        username = username or unique_name()
        data = {
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "country": "Egypt",
            "phoneNumber": "+201000000000",
        }
        data.update(fields)
        return username, client.post("/api/Account/Register", data=data, files=files)
    return _register


@pytest.fixture
def login(client):
    def _login(username, password=PASSWORD):
        return client.post("/api/Account/Login", json={"username": username, "password": password})
    return _login


def _session(username, password, tokens):
    return {
        "username": username,
        "password": password,
        "tokens": tokens,
        "headers": {"Authorization": f"Bearer {tokens['token']}"},
    }


@pytest.fixture
def user_factory(register, login):
    """Create a fresh logged-in regular user."""
    def make(password=PASSWORD):
        username, resp = register(password=password)
        assert resp.status_code == 200, resp.text
        lr = login(username, password)
        assert lr.status_code == 200, lr.text
        return _session(username, password, lr.json())
    return make


@pytest.fixture
def admin(login):
    lr = login(os.environ["ADMIN_USERNAME"], os.environ["ADMIN_PASSWORD"])
    assert lr.status_code == 200, lr.text
    return _session(os.environ["ADMIN_USERNAME"], os.environ["ADMIN_PASSWORD"], lr.json())


@pytest.fixture
def in_memory_db():
    """Run `fn(session)` against a fresh in-memory database and return its result."""
    def run(fn):
        async def runner():
            engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
            enable_sqlite_foreign_keys(engine)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            Session = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
            try:
                async with Session() as session:
                    return await fn(session)
            finally:
                await engine.dispose()
        return asyncio.run(runner())
    return run
