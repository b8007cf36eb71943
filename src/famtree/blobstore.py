"""Photo storage backends keyed by opaque string keys."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import boto3
from botocore.exceptions import ClientError

from .config import Settings

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


@dataclass
class BlobObject:
    key: str
    size: int
    etag: str
    uploaded: datetime
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


class BlobStore(Protocol):
    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> BlobObject: ...

    def get(self, key: str) -> Optional[BlobObject]: ...

    def head(self, key: str) -> Optional[BlobObject]: ...

    def delete(self, keys: Union[str, Iterable[str]]) -> None: ...

    def list(self, prefix: str = "") -> List[BlobObject]: ...


def _as_key_list(keys: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class LocalBlobStore:
    """Blob store backed by a directory, with a JSON sidecar per object."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or key.endswith(META_SUFFIX):
            raise ValueError(f"Invalid blob key: {key!r}")
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key!r}")
        return path

    def _read_meta(self, path: Path) -> Dict[str, Any]:
        meta_path = path.with_name(path.name + META_SUFFIX)
        if not meta_path.exists():
            return {}
        return json.loads(meta_path.read_text(encoding="utf-8"))

    def _object(self, key: str, path: Path, body: Optional[bytes] = None) -> BlobObject:
        meta = self._read_meta(path)
        stat = path.stat()
        uploaded = meta.get("uploaded")
        return BlobObject(
            key=key,
            size=stat.st_size,
            etag=meta.get("etag", ""),
            uploaded=(
                datetime.fromisoformat(uploaded)
                if uploaded
                else datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            ),
            content_type=meta.get("contentType"),
            metadata=meta.get("metadata", {}),
            body=body,
        )

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> BlobObject:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        uploaded = datetime.now(timezone.utc)
        meta = {
            "contentType": content_type,
            "metadata": metadata or {},
            "size": len(data),
            "etag": hashlib.md5(data).hexdigest(),
            "uploaded": uploaded.isoformat(),
        }
        path.with_name(path.name + META_SUFFIX).write_text(json.dumps(meta), encoding="utf-8")
        path.write_bytes(data)
        logger.debug("Stored %s (%d bytes) under %s", key, len(data), self.root)
        return self._object(key, path)

    def get(self, key: str) -> Optional[BlobObject]:
        path = self._path(key)
        if not path.is_file():
            return None
        return self._object(key, path, body=path.read_bytes())

    def head(self, key: str) -> Optional[BlobObject]:
        path = self._path(key)
        if not path.is_file():
            return None
        return self._object(key, path)

    def delete(self, keys: Union[str, Iterable[str]]) -> None:
        for key in _as_key_list(keys):
            path = self._path(key)
            path.unlink(missing_ok=True)
            path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)

    def list(self, prefix: str = "") -> List[BlobObject]:
        objects = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.endswith(META_SUFFIX):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                objects.append(self._object(key, path))
        return objects


class S3BlobStore:
    """Blob store backed by an S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        if client is None:
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.bucket = bucket
        self.client = client

    @staticmethod
    def _is_missing(exc: Exception) -> bool:
        response = getattr(exc, "response", None) or {}
        code = str(response.get("Error", {}).get("Code", ""))
        return code in {"NoSuchKey", "404", "NotFound"}

    def _object(self, key: str, response: Dict[str, Any], body: Optional[bytes] = None) -> BlobObject:
        return BlobObject(
            key=key,
            size=int(response.get("ContentLength", len(body) if body is not None else 0)),
            etag=str(response.get("ETag", "")).strip('"'),
            uploaded=response.get("LastModified") or datetime.now(timezone.utc),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
            body=body,
        )

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> BlobObject:
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata
        response = self.client.put_object(**params)
        logger.debug("Uploaded s3://%s/%s (%d bytes)", self.bucket, key, len(data))
        return BlobObject(
            key=key,
            size=len(data),
            etag=str(response.get("ETag", "")).strip('"'),
            uploaded=datetime.now(timezone.utc),
            content_type=content_type,
            metadata=dict(metadata or {}),
        )

    def get(self, key: str) -> Optional[BlobObject]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                return None
            raise
        return self._object(key, response, body=response["Body"].read())

    def head(self, key: str) -> Optional[BlobObject]:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                return None
            raise
        return self._object(key, response)

    def delete(self, keys: Union[str, Iterable[str]]) -> None:
        key_list = _as_key_list(keys)
        if len(key_list) == 1:
            self.client.delete_object(Bucket=self.bucket, Key=key_list[0])
        elif key_list:
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in key_list], "Quiet": True},
            )

    def list(self, prefix: str = "") -> List[BlobObject]:
        paginator = self.client.get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for entry in page.get("Contents", []):
                objects.append(
                    BlobObject(
                        key=entry["Key"],
                        size=int(entry.get("Size", 0)),
                        etag=str(entry.get("ETag", "")).strip('"'),
                        uploaded=entry.get("LastModified") or datetime.now(timezone.utc),
                    )
                )
        return objects


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the blob store selected by ``settings.blob_backend``."""

    if settings.blob_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("FAMTREE_S3_BUCKET must be set for the s3 blob backend")
        logger.info("Using S3 image storage in bucket %s", settings.s3_bucket)
        return S3BlobStore(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )

    logger.info("Using local image storage at %s", settings.blob_dir)
    return LocalBlobStore(settings.blob_dir)
