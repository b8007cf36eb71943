from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from famtree import models
from famtree.blobstore import LocalBlobStore
from famtree.config import Settings
from famtree.database import get_blob_store, get_session
from famtree.main import create_app

TEST_ENGINE = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=TEST_ENGINE, autocommit=False, autoflush=False, future=True)

models.Base.metadata.create_all(bind=TEST_ENGINE)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url="sqlite://",
        blob_backend="local",
        blob_dir=tmp_path / "lifespan-images",
        layout_engine="fallback",
    )


@pytest.fixture()
def session() -> Session:
    connection = TEST_ENGINE.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "images")


@pytest.fixture()
def client(settings: Settings, session: Session, blob_store: LocalBlobStore) -> TestClient:
    app = create_app(settings)

    def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
