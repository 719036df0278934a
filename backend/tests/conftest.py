"""
Test fixtures and configuration for pytest.
"""
from __future__ import annotations

import os

# Settings are loaded when thiraiview is first imported; configure them first.
os.environ.setdefault("ENV", "development")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")
os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "10")
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from thiraiview.database import Base, get_db
from thiraiview.main import app
from thiraiview.models import User
from thiraiview.passwords import get_password_hash
from thiraiview.roles import Role
from thiraiview.tokens import TokenCodec

ACCESS_SECRET = os.environ["JWT_SECRET"]
REFRESH_SECRET = os.environ["REFRESH_TOKEN_SECRET"]
DEFAULT_PASSWORD = "correct-horse-battery"

_hash_cache: dict[str, str] = {}


def _hash(password: str) -> str:
    if password not in _hash_cache:
        _hash_cache[password] = get_password_hash(password)
    return _hash_cache[password]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl="1h",
        refresh_ttl="30d",
    )


@pytest.fixture
def make_user(db):
    def _make(
        username: str = "alice",
        *,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.USER,
        blocked: bool = False,
        is_verified: bool = True,
    ) -> User:
        user = User(
            email=email or f"{username}@example.com",
            username=username,
            name=username.title(),
            password_hash=_hash(password),
            role=role.value,
            blocked=blocked,
            is_verified=is_verified,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
