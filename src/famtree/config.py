"""Application configuration management."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field

DEFAULT_BLOB_DIR = Path.home() / ".local" / "share" / "familytree" / "r2-images"


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"FAMTREE_{name}", default)


class Settings(BaseModel):
    """Runtime configuration for the API."""

    app_name: str = Field(default="Family Tree API")
    database_url: str = Field(
        default_factory=lambda: _env("DATABASE_URL", "sqlite:///./family_tree.db"),
        description="Database connection URL compatible with SQLAlchemy",
    )
    blob_backend: Literal["local", "s3"] = Field(
        default_factory=lambda: _env("BLOB_BACKEND", "local"),
        description="Where uploaded photos are stored",
    )
    blob_dir: Path = Field(
        default_factory=lambda: Path(_env("BLOB_DIR") or DEFAULT_BLOB_DIR),
        description="Root directory of the filesystem blob store",
    )
    s3_bucket: Optional[str] = Field(default_factory=lambda: _env("S3_BUCKET"))
    s3_region: Optional[str] = Field(default_factory=lambda: _env("S3_REGION"))
    s3_endpoint_url: Optional[str] = Field(default_factory=lambda: _env("S3_ENDPOINT_URL"))
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_image_types: Tuple[str, ...] = Field(
        default=("image/jpeg", "image/png", "image/gif", "image/webp")
    )
    layout_engine: Literal["auto", "graphviz", "fallback"] = Field(
        default_factory=lambda: _env("LAYOUT_ENGINE", "auto")
    )
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()  # type: ignore[arg-type]
