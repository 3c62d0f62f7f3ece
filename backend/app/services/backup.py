"""Backup orchestration: download-then-archive and storage cleanup.

Download flow
  1. load the customer in the caller's workspace (404 otherwise)
  2. require status `completed`
  3. load its step data
  4. flip the status to `archived` with a conditional UPDATE and commit
     before anything else happens; of two concurrent downloads only the
     one whose UPDATE matched goes on to build an archive
  5. build the archive
  6. append a `download` entry to the backup log (failure only logged)

  A customer already archived can be downloaded again with
  `redownload=True` as long as its documents have not been cleaned up.
  This covers a build that failed after step 4 committed. It changes
  no state and still writes a log entry.

Cleanup flow
  1. load the customer (404), 2. require status `archived`,
  3. locate every document in its step data, 4. delete them all
  (best effort, see app.services.accounting), 5. append a `cleanup`
  entry with the real counts (failure only logged), 6. drop the
  workspace's cached storage stats.
  No documents at all is a successful no-op. Keys under another
  workspace's prefix are never read or deleted; they are reported as
  failed by cleanup and skipped by the archive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import CurrentUser
from app.config import settings
from app.middleware.exceptions import InvalidStateError, ResourceNotFoundError
from app.models.backup_log import BackupAction
from app.models.customer import Customer, CustomerStatus
from app.schemas.backup import StorageStatsOut
from app.services import accounting, records
from app.services.archive import backup_filename, build_backup_archive
from app.storage.adapters import ObjectStorage
from app.storage.locator import DocumentHit, locate_documents
from app.storage.references import belongs_to_workspace
from app.utils.cache import cached, invalidate_cache

logger = logging.getLogger(__name__)

STORAGE_STATS_CACHE_PREFIX = "backup_storage"


@dataclass
class BackupDownload:
    customer_id: str
    filename: str
    content: bytes
    documents_included: int = 0
    documents_skipped: int = 0


@dataclass
class CleanupReport:
    documents_deleted: int = 0
    documents_failed: int = 0
    storage_freed_bytes: int = 0
    failed_refs: list[str] = field(default_factory=list)
    message: str | None = None

    @property
    def storage_freed_mb(self) -> float:
        return accounting.to_mb(self.storage_freed_bytes)


@dataclass
class CleanupPreview:
    customer: Customer
    documents: list[tuple[DocumentHit, int | None]]

    @property
    def total_bytes(self) -> int:
        return sum(size or 0 for _, size in self.documents)


@dataclass
class BackupCandidate:
    customer: Customer
    usage: accounting.StorageUsage


# ── Helpers ─────────────────────────────────────────────────

async def _load_customer(db: AsyncSession, customer_id: str, workspace_id: str) -> Customer:
    customer = await records.get_customer(db, customer_id, workspace_id)
    if customer is None:
        raise ResourceNotFoundError("Customer", customer_id)
    return customer


async def _log_action(
    db: AsyncSession,
    customer: Customer,
    actor: CurrentUser,
    action: BackupAction,
    *,
    documents_deleted: int = 0,
    storage_freed_bytes: int = 0,
) -> None:
    """Append to the backup log. The operation already happened, so a
    failure here is logged and swallowed."""
    try:
        await records.record_backup_log(
            db,
            customer=customer,
            performed_by=actor.id,
            performed_by_username=actor.username,
            action=action,
            documents_deleted=documents_deleted,
            storage_freed_bytes=storage_freed_bytes,
        )
        await db.commit()
    except Exception:
        logger.exception(
            "Failed to write %s log entry for customer %s", action.value, customer.id
        )
        await db.rollback()


# ── Download ────────────────────────────────────────────────

async def download_backup(
    db: AsyncSession,
    storage: ObjectStorage,
    customer_id: str,
    workspace_id: str,
    actor: CurrentUser,
    *,
    redownload: bool = False,
) -> BackupDownload:
    customer = await _load_customer(db, customer_id, workspace_id)
    status = CustomerStatus(customer.status)

    if redownload:
        if status != CustomerStatus.ARCHIVED:
            raise InvalidStateError(
                "Only archived customers can be downloaded again", status.value
            )
        if await records.has_cleanup_log(db, customer_id, workspace_id):
            raise InvalidStateError(
                "Documents for this customer have already been cleaned up", status.value
            )
    elif status == CustomerStatus.ARCHIVED:
        raise InvalidStateError("Customer has already been archived", status.value)
    elif not status.can_transition_to(CustomerStatus.ARCHIVED):
        raise InvalidStateError(
            "Only completed customers can be backed up", status.value
        )

    steps = await records.get_steps(db, customer_id, workspace_id)

    if not redownload:
        if not await records.mark_archived(db, customer_id, workspace_id):
            await db.rollback()
            raise InvalidStateError(
                "Customer has already been archived", CustomerStatus.ARCHIVED.value
            )
        await db.commit()
        await db.refresh(customer)
        logger.info("Customer %s archived by %s", customer_id, actor.username)

    exported_at = datetime.utcnow()
    archive = await build_backup_archive(
        customer,
        steps,
        storage,
        exported_by=actor.username,
        exported_at=exported_at,
        workspace_id=workspace_id,
    )

    download = BackupDownload(
        customer_id=customer.id,
        filename=backup_filename(customer.name, exported_at.date()),
        content=archive.content,
        documents_included=len(archive.documents_included),
        documents_skipped=len(archive.documents_skipped),
    )
    await _log_action(db, customer, actor, BackupAction.DOWNLOAD)
    return download


# ── Cleanup ─────────────────────────────────────────────────

def _require_archived(customer: Customer) -> None:
    if customer.status != CustomerStatus.ARCHIVED.value:
        raise InvalidStateError(
            "Customer must be archived before cleanup. Download a backup first.",
            customer.status,
        )


async def preview_cleanup(
    db: AsyncSession,
    storage: ObjectStorage,
    customer_id: str,
    workspace_id: str,
) -> CleanupPreview:
    """What a cleanup would destroy, for the operator's confirmation step."""
    customer = await _load_customer(db, customer_id, workspace_id)
    _require_archived(customer)
    steps = await records.get_steps(db, customer_id, workspace_id)

    documents = []
    for hit in locate_documents(steps):
        if not belongs_to_workspace(hit.reference, workspace_id):
            continue
        documents.append((hit, await accounting.stat(storage, hit.reference)))
    return CleanupPreview(customer=customer, documents=documents)


async def cleanup_storage(
    db: AsyncSession,
    storage: ObjectStorage,
    customer_id: str,
    workspace_id: str,
    actor: CurrentUser,
) -> CleanupReport:
    customer = await _load_customer(db, customer_id, workspace_id)
    _require_archived(customer)
    steps = await records.get_steps(db, customer_id, workspace_id)

    refs = [hit.reference for hit in locate_documents(steps)]
    if not refs:
        logger.info("Cleanup for customer %s: no documents to delete", customer_id)
        return CleanupReport(message="No documents to delete")

    deletion = await accounting.delete_all(storage, refs, workspace_id=workspace_id)

    await _log_action(
        db,
        customer,
        actor,
        BackupAction.CLEANUP,
        documents_deleted=deletion.deleted_count,
        storage_freed_bytes=deletion.total_bytes_freed,
    )
    await invalidate_cache(f"{STORAGE_STATS_CACHE_PREFIX}:{workspace_id}:*")

    if deletion.failed_count:
        logger.warning(
            "Cleanup for customer %s left %d documents behind",
            customer_id, deletion.failed_count,
        )
    return CleanupReport(
        documents_deleted=deletion.deleted_count,
        documents_failed=deletion.failed_count,
        storage_freed_bytes=deletion.total_bytes_freed,
        failed_refs=deletion.failed_refs,
    )


# ── Dashboards ──────────────────────────────────────────────

async def list_backup_candidates(
    db: AsyncSession,
    storage: ObjectStorage,
    workspace_id: str,
    status: CustomerStatus = CustomerStatus.COMPLETED,
) -> list[BackupCandidate]:
    candidates = []
    for customer in await records.list_customers_by_status(db, workspace_id, status):
        steps = await records.get_steps(db, customer.id, workspace_id)
        refs = [hit.reference for hit in locate_documents(steps)]
        usage = await accounting.aggregate(storage, refs, workspace_id=workspace_id)
        candidates.append(BackupCandidate(customer=customer, usage=usage))
    return candidates


def _storage_stats_key(storage: ObjectStorage, *, workspace_id: str) -> str:
    return f"{STORAGE_STATS_CACHE_PREFIX}:{workspace_id}:stats"


@cached(
    ttl=settings.storage_stats_cache_ttl,
    prefix=STORAGE_STATS_CACHE_PREFIX,
    key_builder=_storage_stats_key,
)
async def get_storage_stats(storage: ObjectStorage, *, workspace_id: str) -> StorageStatsOut:
    stats = await accounting.workspace_usage(storage, workspace_id)
    return StorageStatsOut(
        total_storage_bytes=stats.total_storage_bytes,
        total_storage_mb=stats.total_storage_mb,
        total_files=stats.total_files,
        customers_with_documents=stats.customers_with_documents,
    )
