"""Storage accounting for document references.

  - stat()            size of one reference, None when it cannot be resolved
  - aggregate()       total bytes / file count over a reference set (dashboards)
  - delete_all()      best-effort purge with per-reference failure tracking
  - workspace_usage() bucket-level totals for one workspace prefix

References are processed one at a time, in the order given, folding into
an explicit accumulator. One reference failing never stops the rest, and
when a workspace is given, keys belonging to another workspace are never
touched:
    deleted_count + failed_count == number of distinct references
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from app.middleware.exceptions import StorageConfigurationError
from app.storage.adapters import ObjectStorage
from app.storage.references import ReferencePatterns, belongs_to_workspace

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


def to_mb(num_bytes: int) -> float:
    return round(num_bytes / BYTES_PER_MB, 2)


def _unique(refs: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(refs))


@dataclass
class StorageUsage:
    total_bytes: int = 0
    file_count: int = 0

    @property
    def total_mb(self) -> float:
        return to_mb(self.total_bytes)


@dataclass
class DeletionReport:
    deleted_count: int = 0
    failed_count: int = 0
    total_bytes_freed: int = 0
    failed_refs: list[str] = field(default_factory=list)

    @property
    def total_mb_freed(self) -> float:
        return to_mb(self.total_bytes_freed)

    def record_deleted(self, size: int | None) -> None:
        self.deleted_count += 1
        self.total_bytes_freed += size or 0

    def record_failed(self, ref: str) -> None:
        self.failed_count += 1
        self.failed_refs.append(ref)


@dataclass
class WorkspaceStorageStats:
    total_storage_bytes: int = 0
    total_files: int = 0
    customers_with_documents: int = 0

    @property
    def total_storage_mb(self) -> float:
        return to_mb(self.total_storage_bytes)


def _out_of_workspace(ref: str, workspace_id: str | None, patterns: ReferencePatterns | None) -> bool:
    if workspace_id is None or belongs_to_workspace(ref, workspace_id, patterns):
        return False
    logger.warning("Reference %s is outside workspace %s, not touched", ref, workspace_id)
    return True


async def stat(storage: ObjectStorage, ref: str) -> int | None:
    """Size of a stored document, or None if it is missing or unreachable."""
    try:
        return await storage.head_object(ref)
    except StorageConfigurationError:
        raise
    except Exception:
        logger.exception("Failed to stat document %s", ref)
        return None


async def aggregate(
    storage: ObjectStorage,
    refs: Iterable[str],
    *,
    workspace_id: str | None = None,
    patterns: ReferencePatterns | None = None,
) -> StorageUsage:
    """Total size of the references that resolve; missing ones are not counted."""
    usage = StorageUsage()
    for ref in _unique(refs):
        if _out_of_workspace(ref, workspace_id, patterns):
            continue
        size = await stat(storage, ref)
        if size is None:
            continue
        usage.total_bytes += size
        usage.file_count += 1
    return usage


async def delete_all(
    storage: ObjectStorage,
    refs: Iterable[str],
    *,
    workspace_id: str | None = None,
    patterns: ReferencePatterns | None = None,
) -> DeletionReport:
    """Delete every reference, measuring each one first.

    A reference whose size cannot be read still gets a delete attempt and
    contributes 0 bytes. A failed delete, any error from the backend
    (missing credentials included) and a key outside `workspace_id` all
    land in `failed_refs`; the remaining references are still processed.
    """
    report = DeletionReport()
    for ref in _unique(refs):
        if _out_of_workspace(ref, workspace_id, patterns):
            report.record_failed(ref)
            continue

        try:
            size = await stat(storage, ref)
        except StorageConfigurationError as e:
            logger.error("Cannot stat document %s: %s", ref, e.message)
            size = None
        try:
            deleted = await storage.delete_object(ref)
        except Exception:
            logger.exception("Failed to delete document %s", ref)
            deleted = False

        if deleted:
            report.record_deleted(size)
        else:
            report.record_failed(ref)

    logger.info(
        "Deleted %d documents (%d failed), freed %d bytes",
        report.deleted_count, report.failed_count, report.total_bytes_freed,
    )
    return report


async def workspace_usage(storage: ObjectStorage, workspace_id: str) -> WorkspaceStorageStats:
    """Bucket totals under `{workspace_id}/`; keys are {workspace}/{customer}/..."""
    objects = await storage.list_objects(f"{workspace_id}/")
    customer_ids: set[str] = set()
    stats = WorkspaceStorageStats()
    for obj in objects:
        stats.total_storage_bytes += obj.size
        stats.total_files += 1
        parts = obj.key.split("/")
        if len(parts) >= 2:
            customer_ids.add(parts[1])
    stats.customers_with_documents = len(customer_ids)
    return stats
