"""Object storage for uploaded videos.

Provides a pluggable storage backend: local filesystem (default), in-memory
(tests) and S3-compatible buckets such as Cloudflare R2. Objects are
addressed by a generated key; `delete` on a missing key is a no-op so both
the reaper and immediate cleanup can call it repeatedly.
"""

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

EXTENSIONS_BY_MIME = {
    "video/mp4": ".mp4",
    "video/mpeg": ".mpeg",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
}


class StorageBackend(ABC):
    """Abstract storage backend for uploaded objects."""

    @abstractmethod
    async def save(self, key: str, data: bytes, content_type: str) -> str:
        """Save file data. Returns the storage key."""
        ...

    @abstractmethod
    async def load(self, key: str) -> bytes:
        """Load file data by key. Raises FileNotFoundError if missing."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete file by key. No-op if not found."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        ...


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage.

    Not suitable for multi-server deployments, but works for single-server
    setups and development.
    """

    def __init__(self, base_dir: str | None = None):
        if base_dir is None:
            base_dir = os.environ.get("STORAGE_DIR", "/tmp/videorelay-uploads")
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        # Sanitize key to prevent path traversal
        safe_key = key.replace("..", "").replace("/", "_").replace("\\", "_")
        return self._base_dir / safe_key

    async def save(self, key: str, data: bytes, content_type: str) -> str:
        self._path(key).write_bytes(data)
        return key

    async def load(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {key}")
        return path.read_bytes()

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def exists(self, key: str) -> bool:
        return self._path(key).exists()


class InMemoryStorageBackend(StorageBackend):
    """In-memory storage for testing. No disk I/O."""

    def __init__(self):
        self._store: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    async def save(self, key: str, data: bytes, content_type: str) -> str:
        self._store[key] = data
        self.content_types[key] = content_type
        return key

    async def load(self, key: str) -> bytes:
        if key not in self._store:
            raise FileNotFoundError(f"File not found: {key}")
        return self._store[key]

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        self.content_types.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._store

    def keys(self) -> list[str]:
        return list(self._store)


class S3StorageBackend(StorageBackend):
    """S3-compatible bucket (AWS S3, Cloudflare R2, MinIO).

    boto3 is synchronous; calls run in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4"),
        )

    async def save(self, key: str, data: bytes, content_type: str) -> str:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return key

    async def load(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=key
            )
        except ClientError as e:
            if _is_not_found(e):
                raise FileNotFoundError(f"File not found: {key}") from e
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def delete(self, key: str) -> None:
        # S3 reports success for missing keys.
        await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True


def _is_not_found(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code", "")
    return code in ("404", "NoSuchKey", "NotFound")


def extension_for(content_type: str) -> str:
    return EXTENSIONS_BY_MIME.get(content_type, ".mp4")


def generate_storage_key(content_type: str) -> str:
    """Generate a unique, unguessable storage key: {uuid4 hex}{extension}."""
    return f"{uuid.uuid4().hex}{extension_for(content_type)}"


def build_media_url(base_url: str, key: str) -> str:
    """Public URL the aggregator fetches the object from."""
    return f"{base_url.rstrip('/')}/{key}"


def build_storage_backend(settings) -> StorageBackend:
    backend = settings.storage_backend.lower()
    if backend == "s3":
        if not settings.s3_bucket:
            raise RuntimeError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        return S3StorageBackend(
            settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
    if backend == "memory":
        return InMemoryStorageBackend()
    if backend == "local":
        return LocalStorageBackend(settings.storage_dir)
    raise RuntimeError(f"Unknown storage backend: {settings.storage_backend}")


# Module-level singleton, replaced in tests
_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    """Get the current storage backend."""
    global _storage
    if _storage is None:
        from videorelay.config import settings
        _storage = build_storage_backend(settings)
    return _storage


def set_storage(backend: StorageBackend | None) -> None:
    """Set the storage backend (used for testing)."""
    global _storage
    _storage = backend
