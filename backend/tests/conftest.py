from pathlib import Path
import os
import tempfile
import uuid

import pytest
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

# Point the app at a throwaway database and upload folder before it is imported.
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="gradtracker-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_ROOT / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP_ROOT / "uploads")
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-bytes-for-hs256"

from fastapi.testclient import TestClient  # noqa: E402

from gradtracker.database import _enable_sqlite_foreign_keys, create_db_and_tables  # noqa: E402
from gradtracker.main import app  # noqa: E402
from gradtracker.services import AuthService  # noqa: E402


@pytest.fixture
def make_user():
    """Register and log in a fresh user; returns id, email and auth headers."""
    client = TestClient(app)

    def _make(name: str = "Alice", password: str = "pw123456") -> dict:
        email = f"{name.lower()}-{uuid.uuid4().hex[:8]}@x.com"
        r = client.post("/api/users/register", json={"name": name, "email": email, "password": password})
        assert r.status_code == 201, r.text
        login = client.post("/api/users/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        token = login.json()["token"]
        return {
            "id": r.json()["userId"],
            "email": email,
            "password": password,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
def session():
    """An isolated in-memory database session for service-level tests."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    create_db_and_tables(engine)
    with Session(engine) as s:
        yield s
    engine.dispose()


@pytest.fixture
def make_account(session):
    """Create a user directly through the service layer and return its id."""
    def _make(name: str = "Alice") -> int:
        email = f"{name.lower()}-{uuid.uuid4().hex[:8]}@x.com"
        return AuthService(session).register(name, email, "pw123456").user_id

    return _make
