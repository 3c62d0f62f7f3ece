"""Customer backup & storage cleanup router (admin only).

Endpoints:
    GET    /api/admin/backup/customers               Backup candidates with storage use
    GET    /api/admin/backup/storage                 Workspace storage totals (cached)
    GET    /api/admin/backup/logs                    Backup log, newest first
    POST   /api/admin/backup/download                Archive a customer, return the zip
    GET    /api/admin/backup/cleanup/{id}/preview    What a cleanup would delete
    DELETE /api/admin/backup/cleanup/{id}            Delete an archived customer's documents

The workspace always comes from the caller's token.
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import CurrentUser, UserRole, require_role
from app.database import get_db
from app.middleware.exceptions import ConfirmationRequiredError, InvalidStateError
from app.models.customer import CustomerStatus
from app.schemas.backup import (
    BackupCustomerOut,
    BackupCustomersResponse,
    BackupDownloadRequest,
    BackupLogOut,
    CleanupDocumentOut,
    CleanupPreviewOut,
    CleanupRequest,
    CleanupResultOut,
    StorageStatsOut,
)
from app.schemas.common import PaginatedResponse
from app.services import backup, records
from app.services.accounting import to_mb
from app.storage.adapters import ObjectStorage, get_storage

router = APIRouter()

require_admin = require_role(UserRole.ADMIN)


@router.get("/customers", response_model=BackupCustomersResponse)
async def list_backup_customers(
    status: CustomerStatus = Query(CustomerStatus.COMPLETED),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    user: CurrentUser = Depends(require_admin),
):
    """Completed customers ready for backup (or archived ones awaiting cleanup)."""
    if status == CustomerStatus.ACTIVE:
        raise InvalidStateError("Active customers cannot be backed up", status.value)

    candidates = await backup.list_backup_candidates(db, storage, user.workspace_id, status)
    customers = [
        BackupCustomerOut(
            id=c.customer.id,
            name=c.customer.name,
            phone=c.customer.phone,
            type=c.customer.type,
            status=c.customer.status,
            kw_capacity=c.customer.kw_capacity,
            quotation=c.customer.quotation,
            completed_at=c.customer.updated_at,
            document_count=c.usage.file_count,
            storage_bytes=c.usage.total_bytes,
            storage_mb=c.usage.total_mb,
        )
        for c in candidates
    ]
    total_bytes = sum(c.storage_bytes for c in customers)
    return BackupCustomersResponse(
        customers=customers,
        total_customers=len(customers),
        total_documents=sum(c.document_count for c in customers),
        total_storage_bytes=total_bytes,
        total_storage_mb=to_mb(total_bytes),
    )


@router.get("/storage", response_model=StorageStatsOut)
async def storage_stats(
    storage: ObjectStorage = Depends(get_storage),
    user: CurrentUser = Depends(require_admin),
):
    return await backup.get_storage_stats(storage, workspace_id=user.workspace_id)


@router.get("/logs", response_model=PaginatedResponse[BackupLogOut])
async def list_backup_logs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_admin),
):
    items, total = await records.list_backup_logs(
        db, user.workspace_id, limit=limit, offset=offset
    )
    return PaginatedResponse(
        items=[BackupLogOut.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/download")
async def download_backup(
    body: BackupDownloadRequest,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    user: CurrentUser = Depends(require_admin),
):
    """Archive the customer and stream back the backup zip.

    The customer is marked archived before the zip is built; if the build
    fails, retry with `redownload: true`.
    """
    result = await backup.download_backup(
        db,
        storage,
        body.customer_id,
        user.workspace_id,
        user,
        redownload=body.redownload,
    )
    return Response(
        content=result.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Documents-Included": str(result.documents_included),
            "X-Documents-Skipped": str(result.documents_skipped),
        },
    )


@router.get("/cleanup/{customer_id}/preview", response_model=CleanupPreviewOut)
async def preview_cleanup(
    customer_id: str,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    user: CurrentUser = Depends(require_admin),
):
    preview = await backup.preview_cleanup(db, storage, customer_id, user.workspace_id)
    return CleanupPreviewOut(
        customer_id=preview.customer.id,
        customer_name=preview.customer.name,
        document_count=len(preview.documents),
        storage_bytes=preview.total_bytes,
        storage_mb=to_mb(preview.total_bytes),
        documents=[
            CleanupDocumentOut(
                reference=hit.reference,
                category=hit.category,
                step_number=hit.step_number,
                size_bytes=size,
            )
            for hit, size in preview.documents
        ],
    )


@router.delete("/cleanup/{customer_id}", response_model=CleanupResultOut)
async def cleanup_customer_storage(
    customer_id: str,
    body: CleanupRequest,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    user: CurrentUser = Depends(require_admin),
):
    """Permanently delete every stored document of an archived customer."""
    if not body.confirm:
        raise ConfirmationRequiredError(
            "Document deletion is irreversible; resend with confirm=true"
        )

    report = await backup.cleanup_storage(db, storage, customer_id, user.workspace_id, user)
    return CleanupResultOut(
        success=True,
        message=report.message,
        documents_deleted=report.documents_deleted,
        documents_failed=report.documents_failed,
        storage_freed_bytes=report.storage_freed_bytes,
        storage_freed_mb=report.storage_freed_mb,
        failed_urls=report.failed_refs,
    )
