"""Document references and how they map onto storage backends.

A document reference is the string the step forms saved for an upload.
Two generations exist side by side:

  - TenantKey   an object key in the R2 bucket, laid out as
                {workspace_id}/{customer_id}/{category}/{timestamp}_{filename}
                Saved either as the bare key or as an object-storage URL
                (presigned or served from the public custom domain).
  - LegacyUrl   an absolute URL on the legacy blob store, from before the
                move to R2.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from app.config import settings

_URL_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass(frozen=True)
class ReferencePatterns:
    """Hosts that identify stored documents among arbitrary URL values."""
    object_storage_host: str
    legacy_blob_host: str
    public_url: str = ""
    bucket: str = ""

    @classmethod
    def from_settings(cls) -> "ReferencePatterns":
        return cls(
            object_storage_host=settings.object_storage_host,
            legacy_blob_host=settings.legacy_blob_host,
            public_url=settings.r2_public_url.rstrip("/"),
            bucket=settings.r2_bucket_name,
        )

    def is_object_storage_url(self, value: str) -> bool:
        if self.public_url and value.startswith(self.public_url + "/"):
            return True
        return bool(self.object_storage_host) and self.object_storage_host in value

    def is_legacy_url(self, value: str) -> bool:
        return bool(self.legacy_blob_host) and self.legacy_blob_host in value


def has_url_scheme(value: str) -> bool:
    return bool(_URL_SCHEME_RE.match(value))


@dataclass(frozen=True)
class TenantKey:
    key: str
    raw: str

    @property
    def filename(self) -> str:
        """Original upload name: last path segment minus the timestamp prefix."""
        last = self.key.rsplit("/", 1)[-1]
        _, sep, rest = last.partition("_")
        return rest if sep and rest else last


@dataclass(frozen=True)
class LegacyUrl:
    url: str

    @property
    def raw(self) -> str:
        return self.url

    @property
    def filename(self) -> str:
        path = urlsplit(self.url).path
        return unquote(path.rsplit("/", 1)[-1]) or "download"


StorageReference = TenantKey | LegacyUrl


def parse_reference(raw: str, patterns: ReferencePatterns | None = None) -> StorageReference:
    """Classify a raw reference string and resolve its object key if it has one."""
    patterns = patterns or ReferencePatterns.from_settings()

    if patterns.is_legacy_url(raw) and has_url_scheme(raw):
        return LegacyUrl(url=raw)
    if not has_url_scheme(raw):
        return TenantKey(key=raw.lstrip("/"), raw=raw)

    if patterns.public_url and raw.startswith(patterns.public_url + "/"):
        key = raw[len(patterns.public_url) + 1:]
        return TenantKey(key=unquote(key.split("?", 1)[0]), raw=raw)

    # Presigned / path-style endpoint URL: /{bucket}/{key}?X-Amz-...
    key = unquote(urlsplit(raw).path.lstrip("/"))
    if patterns.bucket and key.startswith(patterns.bucket + "/"):
        key = key[len(patterns.bucket) + 1:]
    return TenantKey(key=key, raw=raw)


def build_object_key(
    workspace_id: str,
    customer_id: str,
    category: str,
    filename: str,
    timestamp_ms: int,
) -> str:
    """Tenant-scoped object key for a newly stored document."""
    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", filename)
    return f"{workspace_id}/{customer_id}/{category}/{timestamp_ms}_{safe_name}"


def belongs_to_workspace(
    raw: str,
    workspace_id: str,
    patterns: ReferencePatterns | None = None,
) -> bool:
    """Whether a reference may be read or deleted on behalf of `workspace_id`.

    Tenant keys must sit under `{workspace_id}/`. Legacy URLs carry no
    workspace and are trusted as found in the workspace's own step data.
    """
    ref = parse_reference(raw, patterns)
    if isinstance(ref, LegacyUrl):
        return True
    return ref.key.split("/", 1)[0] == workspace_id
