"""
Object storage with provider abstraction.

Supports local disk (default, development), S3-compatible buckets and a
generic HTTP object store. Provider is selected via configuration. Deletion is
idempotent on missing objects; every other failure surfaces as ExternalIOError.

Uploads live under ``challenge-submissions/{challenge_id}/{user_id}/`` so a
URL can be traced back to the user who uploaded it.
"""

from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from portal.config import get_settings
from portal.errors import ExternalIOError

logger = structlog.get_logger()

SUBMISSIONS_PREFIX = "challenge-submissions"

_KEY_SEGMENT = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]*")
_SUFFIX = re.compile(r"\.[a-z0-9]{1,10}")


def upload_prefix(challenge_id: int, user_id: int) -> str:
    """Key prefix of the files a user uploaded for a challenge."""
    return f"{SUBMISSIONS_PREFIX}/{challenge_id}/{user_id}"


def is_safe_key(key: str) -> bool:
    """Plain relative keys only: no empty, dot or dot-dot segments."""
    segments = key.split("/")
    return all(_KEY_SEGMENT.fullmatch(s) for s in segments)


class BaseStorageProvider(ABC):
    """Abstract base class for object storage providers."""

    def __init__(self, public_base_url: str) -> None:
        self.public_base_url = public_base_url.rstrip("/")

    def owns(self, url: str, prefix: str | None = None) -> bool:
        """True when the URL points into this store, and under ``prefix`` when one is given."""
        if not self.public_base_url or not url.startswith(self.public_base_url + "/"):
            return False
        key = self.key_for(url)
        if not is_safe_key(key):
            return False
        return prefix is None or key.startswith(prefix.rstrip("/") + "/")

    def key_for(self, url: str) -> str:
        return url[len(self.public_base_url) + 1 :]

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    @staticmethod
    def new_key(filename: str, prefix: str) -> str:
        suffix = Path(filename).suffix.lower()
        if not _SUFFIX.fullmatch(suffix):
            suffix = ""
        key = f"{prefix.rstrip('/')}/{uuid.uuid4().hex}{suffix}"
        if not is_safe_key(key):
            raise ValueError(f"Unsafe storage prefix: {prefix!r}")
        return key

    @abstractmethod
    async def store(self, data: bytes, *, filename: str, prefix: str, content_type: str | None = None) -> str:
        """Store bytes under ``prefix`` and return a retrievable URL."""
        ...

    @abstractmethod
    async def delete(self, url: str) -> None:
        """Delete the object behind ``url``. Missing objects are not an error."""
        ...


class LocalDiskProvider(BaseStorageProvider):
    """Store objects under a local directory served at ``public_base_url``."""

    def __init__(self, root: str, public_base_url: str) -> None:
        super().__init__(public_base_url)
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if not is_safe_key(key) or not path.is_relative_to(root):
            raise ExternalIOError(f"Refusing storage key outside {self.root}: {key}")
        return path

    async def store(self, data: bytes, *, filename: str, prefix: str, content_type: str | None = None) -> str:
        key = self.new_key(filename, prefix)
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ExternalIOError(f"Could not store {filename}: {e}") from e
        return self.url_for(key)

    async def delete(self, url: str) -> None:
        path = self._path(self.key_for(url))
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise ExternalIOError(f"Could not delete {url}: {e}") from e


class S3Provider(BaseStorageProvider):
    """Store objects in an S3-compatible bucket via aioboto3."""

    def __init__(
        self,
        bucket: str,
        region: str,
        public_base_url: str,
        endpoint_url: str = "",
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(public_base_url)
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url or None
        self.timeout_seconds = timeout_seconds

    def _client(self):  # noqa: ANN202
        import aioboto3
        from botocore.config import Config

        session = aioboto3.Session()
        return session.client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=Config(
                connect_timeout=self.timeout_seconds,
                read_timeout=self.timeout_seconds,
                retries={"max_attempts": 1},
            ),
        )

    async def store(self, data: bytes, *, filename: str, prefix: str, content_type: str | None = None) -> str:
        key = self.new_key(filename, prefix)
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type or "application/octet-stream",
                )
        except Exception as e:
            raise ExternalIOError(f"Could not store {filename}: {e}") from e
        return self.url_for(key)

    async def delete(self, url: str) -> None:
        try:
            async with self._client() as s3:
                # DeleteObject succeeds on missing keys
                await s3.delete_object(Bucket=self.bucket, Key=self.key_for(url))
        except Exception as e:
            raise ExternalIOError(f"Could not delete {url}: {e}") from e


class HTTPStorageProvider(BaseStorageProvider):
    """Store objects through a plain HTTP object store (PUT/DELETE by key)."""

    def __init__(self, base_url: str, token: str = "", timeout_seconds: float = 10.0) -> None:
        super().__init__(base_url)
        self.token = token
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def store(self, data: bytes, *, filename: str, prefix: str, content_type: str | None = None) -> str:
        import httpx

        key = self.new_key(filename, prefix)
        headers = {**self._headers(), "Content-Type": content_type or "application/octet-stream"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.put(self.url_for(key), content=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalIOError(f"Could not store {filename}: {e}") from e
        return self.url_for(key)

    async def delete(self, url: str) -> None:
        import httpx

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.delete(url, headers=self._headers())
                if response.status_code != 404:
                    response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalIOError(f"Could not delete {url}: {e}") from e


def _create_provider() -> BaseStorageProvider:
    """Create the storage provider based on configuration."""
    settings = get_settings()
    provider_name = settings.storage_provider.lower()

    if provider_name == "local":
        return LocalDiskProvider(
            root=settings.storage_local_path,
            public_base_url=settings.storage_public_base_url,
        )
    if provider_name == "s3":
        return S3Provider(
            bucket=settings.storage_bucket,
            region=settings.storage_region,
            public_base_url=settings.storage_public_base_url,
            endpoint_url=settings.storage_endpoint_url,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    if provider_name == "http":
        return HTTPStorageProvider(
            base_url=settings.storage_http_base_url,
            token=settings.storage_http_token,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    msg = f"Unsupported storage provider: {provider_name}"
    raise ValueError(msg)


async def delete_stored_files(
    storage: BaseStorageProvider,
    urls: list[str],
    prefix: str | None = None,
) -> tuple[int, int]:
    """Best-effort deletion of stored files. Returns (deleted, failed).

    URLs outside this store (external links), or outside ``prefix`` when one is
    given, are skipped. Failures are logged and counted, never raised.
    """
    deleted = failed = 0
    for url in urls:
        if not storage.owns(url, prefix):
            logger.info("storage_delete_skipped", url=url, reason="not_owned", prefix=prefix)
            continue
        try:
            await storage.delete(url)
            deleted += 1
        except ExternalIOError as e:
            failed += 1
            logger.warning("storage_delete_failed", url=url, error=e.detail)
    return deleted, failed


# Module-level singleton
_storage: BaseStorageProvider | None = None


def get_storage() -> BaseStorageProvider:
    """Get or create the storage provider singleton (FastAPI dependency)."""
    global _storage  # noqa: PLW0603
    if _storage is None:
        _storage = _create_provider()
    return _storage


def reset_storage() -> None:
    """Drop the provider singleton; the next get_storage() rebuilds it from settings."""
    global _storage  # noqa: PLW0603
    _storage = None
