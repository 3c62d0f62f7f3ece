"""Object-storage adapters used by the backup core.

The core only talks to `ObjectStorage`, keyed by raw reference strings:

    head_object(ref)    -> size in bytes, or None if the object is missing
    get_object(ref)     -> StoredObject, or None if it cannot be fetched
    delete_object(ref)  -> True once the object is gone, False on failure
    list_objects(prefix)-> ObjectInfo for every key under a prefix

`DocumentStorage` is the production implementation. It classifies each
reference (see app.storage.references) and hands it to the backend that
owns it:

  - R2Storage           boto3 against the S3-compatible R2 endpoint
  - LegacyBlobStorage   httpx against the legacy blob store

Backends never raise for a single missing or unreachable object; they log
the cause and report None / False. Deleting an object that does not exist
reports False. Missing credentials are the exception:
those raise StorageConfigurationError because no reference can succeed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.middleware.exceptions import StorageConfigurationError
from app.storage.references import (
    LegacyUrl,
    ReferencePatterns,
    TenantKey,
    parse_reference,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class StoredObject:
    content: bytes
    filename: str
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int


class ObjectStorage(ABC):
    """Contract the backup core relies on."""

    @abstractmethod
    async def head_object(self, reference: str) -> int | None:
        raise NotImplementedError

    @abstractmethod
    async def get_object(self, reference: str) -> StoredObject | None:
        raise NotImplementedError

    @abstractmethod
    async def delete_object(self, reference: str) -> bool:
        raise NotImplementedError

    async def list_objects(self, prefix: str) -> list[ObjectInfo]:
        return []


# ── R2 (S3-compatible) ──────────────────────────────────────

def create_r2_client():
    if not (settings.r2_endpoint and settings.r2_access_key_id and settings.r2_secret_access_key):
        raise StorageConfigurationError(
            "R2 credentials not configured: set R2_ENDPOINT, R2_ACCESS_KEY_ID "
            "and R2_SECRET_ACCESS_KEY"
        )
    return boto3.client(
        "s3",
        endpoint_url=settings.r2_endpoint,
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        region_name="auto",
    )


NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class R2Storage:
    """Tenant-key objects in the R2 bucket. boto3 is blocking, so every
    call runs in Starlette's threadpool."""

    def __init__(self, client=None, bucket: str | None = None):
        self._client = client
        self.bucket = bucket or settings.r2_bucket_name

    @property
    def client(self):
        if self._client is None:
            self._client = create_r2_client()
        return self._client

    async def head(self, ref: TenantKey) -> int | None:
        try:
            response = await run_in_threadpool(
                self.client.head_object, Bucket=self.bucket, Key=ref.key
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("R2 head failed for %s: %s", ref.key, e)
            return None
        return int(response.get("ContentLength") or 0)

    async def get(self, ref: TenantKey) -> StoredObject | None:
        def _fetch():
            response = self.client.get_object(Bucket=self.bucket, Key=ref.key)
            return response["Body"].read(), response.get("ContentType")

        try:
            content, content_type = await run_in_threadpool(_fetch)
        except (ClientError, BotoCoreError) as e:
            logger.warning("R2 download failed for %s: %s", ref.key, e)
            return None
        return StoredObject(
            content=content,
            filename=ref.filename,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )

    async def delete(self, ref: TenantKey) -> bool:
        # DeleteObject succeeds for a missing key, so look first.
        try:
            await run_in_threadpool(
                self.client.head_object, Bucket=self.bucket, Key=ref.key
            )
        except ClientError as e:
            if _is_not_found(e):
                logger.warning("R2 object %s does not exist, nothing to delete", ref.key)
                return False
            logger.warning("R2 head before delete failed for %s: %s", ref.key, e)
        except BotoCoreError as e:
            logger.warning("R2 head before delete failed for %s: %s", ref.key, e)

        try:
            await run_in_threadpool(
                self.client.delete_object, Bucket=self.bucket, Key=ref.key
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 delete failed for %s: %s", ref.key, e)
            return False
        return True

    async def put(self, key: str, content: bytes, content_type: str) -> None:
        await run_in_threadpool(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
        )

    async def list_keys(self, prefix: str) -> list[ObjectInfo]:
        def _list():
            paginator = self.client.get_paginator("list_objects_v2")
            found = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    found.append(ObjectInfo(key=obj["Key"], size=int(obj.get("Size") or 0)))
            return found

        return await run_in_threadpool(_list)


# ── Legacy blob store ───────────────────────────────────────

class LegacyBlobStorage:
    """Absolute-URL documents on the legacy blob store.

    Reads are plain HTTP against the public URL; deletes go through the
    store's API and need the read/write token.
    """

    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.token = settings.blob_read_write_token if token is None else token
        self.api_url = (api_url or settings.legacy_blob_api_url).rstrip("/")
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout, follow_redirects=True
        )

    async def head(self, ref: LegacyUrl) -> int | None:
        try:
            async with self._client() as client:
                response = await client.head(ref.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Legacy blob head failed for %s: %s", ref.url, e)
            return None
        return int(response.headers.get("content-length") or 0)

    async def get(self, ref: LegacyUrl) -> StoredObject | None:
        try:
            async with self._client() as client:
                response = await client.get(ref.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Legacy blob download failed for %s: %s", ref.url, e)
            return None
        return StoredObject(
            content=response.content,
            filename=ref.filename,
            content_type=response.headers.get("content-type", DEFAULT_CONTENT_TYPE),
        )

    async def delete(self, ref: LegacyUrl) -> bool:
        if not self.token:
            logger.error("Cannot delete legacy blob %s: BLOB_READ_WRITE_TOKEN not set", ref.url)
            return False
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/delete",
                    json={"urls": [ref.url]},
                    headers={"authorization": f"Bearer {self.token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Legacy blob delete failed for %s: %s", ref.url, e)
            return False
        return True


# ── Dispatcher ──────────────────────────────────────────────

class DocumentStorage(ObjectStorage):
    """Routes each reference to the backend that stores it."""

    def __init__(
        self,
        r2: R2Storage | None = None,
        legacy: LegacyBlobStorage | None = None,
        patterns: ReferencePatterns | None = None,
    ):
        self.r2 = r2 or R2Storage()
        self.legacy = legacy or LegacyBlobStorage()
        self.patterns = patterns or ReferencePatterns.from_settings()

    def _resolve(self, reference: str):
        ref = parse_reference(reference, self.patterns)
        backend = self.legacy if isinstance(ref, LegacyUrl) else self.r2
        return backend, ref

    async def head_object(self, reference: str) -> int | None:
        backend, ref = self._resolve(reference)
        return await backend.head(ref)

    async def get_object(self, reference: str) -> StoredObject | None:
        backend, ref = self._resolve(reference)
        return await backend.get(ref)

    async def delete_object(self, reference: str) -> bool:
        backend, ref = self._resolve(reference)
        return await backend.delete(ref)

    async def list_objects(self, prefix: str) -> list[ObjectInfo]:
        return await self.r2.list_keys(prefix)


_storage: DocumentStorage | None = None


def get_storage() -> ObjectStorage:
    """FastAPI dependency returning the process-wide document storage."""
    global _storage
    if _storage is None:
        _storage = DocumentStorage()
    return _storage
