# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SITE_URL", "https://blog.example.com")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("FEDERATION_SYNC_ENABLED", "false")

from zlog.core.settings import settings
from zlog.db.session import Base
from zlog.db.session import get_db as app_get_session
from zlog.main import app as fastapi_app
from zlog.models import Category, Post, RemoteSubscription
from zlog.models.post import POST_STATUS_PUBLISHED
from tests.helpers import REMOTE_SITE_URL, FakeRemoteSite

TEST_DB_URL = "sqlite://"

_SLUG_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    """Return authorization headers carrying the admin token."""
    return {"Authorization": f"Bearer {settings.admin_token}"}


@pytest.fixture()
def category(db_session: Session) -> Iterator[Category]:
    """Create a default public category."""
    category = Category(name="Travel", slug="travel", description="Trips", is_public=True)
    db_session.add(category)
    db_session.flush()
    db_session.refresh(category)
    yield category


@pytest.fixture()
def post_factory(db_session: Session, category: Category) -> Callable[..., Post]:
    """Return a factory creating local posts in the default category."""

    def _create(**overrides: Any) -> Post:
        slug = f"post-{next(_SLUG_COUNTER)}"
        values: dict[str, Any] = {
            "category_id": category.id,
            "title": f"Title of {slug}",
            "slug": slug,
            "content": "Hello **world**",
            "excerpt": "Hello world",
            "status": POST_STATUS_PUBLISHED,
        }
        values.update(overrides)
        post = Post(**values)
        db_session.add(post)
        db_session.flush()
        db_session.refresh(post)
        return post

    return _create


@pytest.fixture()
def subscription(db_session: Session, category: Category) -> Iterator[RemoteSubscription]:
    """Create an active outbound subscription to the fake remote site."""
    subscription = RemoteSubscription(
        site_url=REMOTE_SITE_URL,
        remote_category_slug="news",
        remote_category_id="7",
        local_category_id=category.id,
        consecutive_failure_count=0,
        is_active=True,
    )
    db_session.add(subscription)
    db_session.flush()
    db_session.refresh(subscription)
    yield subscription


@pytest.fixture()
def remote_site() -> FakeRemoteSite:
    """Return a fake remote instance with no posts."""
    return FakeRemoteSite()
