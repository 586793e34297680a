import os

os.environ.setdefault("WADAKE_DATABASE_URL", "sqlite://")
os.environ.setdefault("WADAKE_JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from database import Base, get_db
from main import app
import models  # noqa: F401
from seed import seed_categories


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    with Session(eng) as session:
        seed_categories(session)
        session.commit()
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def api(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture()
def login(api):
    """Issue a token for a user id and return bearer headers.

    The session cookie is dropped so requests only authenticate through the
    returned headers.
    """

    def _login(user_id: str, email: str = "", **extra) -> dict[str, str]:
        body = {"id": user_id, "email": email or f"{user_id}@example.com", **extra}
        response = api.post("/api/auth/token", json={"user": body})
        assert response.status_code == 200, response.text
        api.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _login
