"""
Pytest configuration and shared fixtures for the FTTH Tracker tests.
"""

import os
import tempfile
import uuid

# Point settings at throwaway resources before the app is imported
_default_db_fd, _default_db_file = tempfile.mkstemp(suffix="_ftth_default.db")
os.close(_default_db_fd)
os.environ["DATABASE_URL"] = f"sqlite:///{_default_db_file}"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "100000/minute"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ftth_tracker.auth.security import create_access_token, get_password_hash
from ftth_tracker.db import Base, get_db
from ftth_tracker.main import app
from ftth_tracker.models import models  # noqa: F401
from ftth_tracker.models.models import User

TEST_PASSWORD = "senha-teste-123"


@pytest.fixture(scope="function")
def engine():
    """Create test database engine with fresh schema for each test."""
    test_db_fd, test_db_file = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex}.db")
    os.close(test_db_fd)
    test_engine = create_engine(f"sqlite:///{test_db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=test_engine)

    yield test_engine

    test_engine.dispose()
    try:
        os.unlink(test_db_file)
    except OSError:
        pass


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory):
    """Create a test client with the database dependency overridden."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter.enabled = False
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Factory inserting a user row."""

    def _make(
        username=None,
        access_level="USER",
        operacao=None,
        custom_permissions=False,
        permissions=None,
        is_active=True,
        password=TEST_PASSWORD,
    ):
        username = username or f"user_{uuid.uuid4().hex[:8]}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            full_name=username.title(),
            password_hash=get_password_hash(password),
            access_level=access_level,
            custom_permissions=custom_permissions,
            permissions=permissions,
            operacao=operacao,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def admin(make_user):
    return make_user(username="admin", access_level="ADMIN")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def user_password():
    return TEST_PASSWORD
