"""Pytest fixtures: sqlite DB, stores, pipeline factory, client."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DISTRIBUTED_LOCKS", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from jobtrack.main import app
from jobtrack.database import get_db
from jobtrack.models import Base
from jobtrack.services.locks import KeyedLock
from jobtrack.services.pipeline import IngestionPipeline
from jobtrack.services.store import SqlAlchemyStore


@pytest.fixture
def db_urls(tmp_path):
    """
    Use a file-based sqlite DB so sync setup code (tests) and async app sessions
    can see the same data.
    """
    db_path = tmp_path / "test.db"
    sync_url = f"sqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"
    return sync_url, async_url


@pytest.fixture
def db_engine(db_urls):
    sync_url, _ = db_urls
    engine = create_engine(sync_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    from sqlalchemy.orm import sessionmaker
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session):
    return SqlAlchemyStore(db_session)


@pytest.fixture
def make_pipeline(store):
    """Pipeline factory bound to the sync store; one private lock registry per test."""
    locks = KeyedLock(timeout_s=5)

    def _make(user_id: int = 1, **kwargs):
        kwargs.setdefault("locks", locks)
        return IngestionPipeline(store, user_id, **kwargs)

    return _make


@pytest.fixture
def client(db_urls, db_engine):
    _, async_url = db_urls
    async_engine = create_async_engine(
        async_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with AsyncSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
