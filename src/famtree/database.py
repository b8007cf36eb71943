"""Database engine setup and per-request store handles."""

from __future__ import annotations

import logging
from collections.abc import Generator

from fastapi import HTTPException, Request, status
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from . import models
from .blobstore import BlobStore

logger = logging.getLogger(__name__)


class Database:
    """Engine and session factory owned by the running application."""

    def __init__(self, url: str, **engine_options) -> None:
        if url.startswith("sqlite"):
            engine_options.setdefault("connect_args", {"check_same_thread": False})
        self.url = url
        self.engine: Engine = create_engine(url, echo=False, future=True, **engine_options)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, future=True
        )

    def create_all(self) -> None:
        models.Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        logger.info("Closing database connections for %s", self.engine.url)
        self.engine.dispose()


def get_session(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""

    database: Database | None = getattr(request.app.state, "database", None)
    if database is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database not available",
        )

    session = database.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_blob_store(request: Request) -> BlobStore:
    """FastAPI dependency returning the configured image store."""

    store: BlobStore | None = getattr(request.app.state, "blob_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Image storage not available",
        )
    return store
