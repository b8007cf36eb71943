from __future__ import annotations

from pathlib import Path

from famtree.config import DEFAULT_BLOB_DIR, Settings


def test_defaults(monkeypatch) -> None:
    for name in ("DATABASE_URL", "BLOB_BACKEND", "BLOB_DIR", "LAYOUT_ENGINE"):
        monkeypatch.delenv(f"FAMTREE_{name}", raising=False)

    settings = Settings()

    assert settings.database_url == "sqlite:///./family_tree.db"
    assert settings.blob_backend == "local"
    assert settings.blob_dir == DEFAULT_BLOB_DIR
    assert settings.max_upload_bytes == 10 * 1024 * 1024
    assert "image/bmp" not in settings.allowed_image_types
    assert settings.layout_engine == "auto"


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FAMTREE_DATABASE_URL", "sqlite:///other.db")
    monkeypatch.setenv("FAMTREE_BLOB_DIR", str(tmp_path))
    monkeypatch.setenv("FAMTREE_LAYOUT_ENGINE", "fallback")

    settings = Settings()

    assert settings.database_url == "sqlite:///other.db"
    assert settings.blob_dir == tmp_path
    assert settings.layout_engine == "fallback"
