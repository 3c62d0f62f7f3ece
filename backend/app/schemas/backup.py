"""Pydantic schemas for customer backups, storage cleanup and the backup log."""

from datetime import datetime

from pydantic import BaseModel


# ── Data snapshot (customer-data.json inside the archive) ──

class CustomerOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    type: str
    status: str
    current_step: int
    kw_capacity: float | None = None
    quotation: float | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class StepDataOut(BaseModel):
    id: str
    customer_id: str
    step_number: int
    data: dict
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


# ── Backup candidates & storage dashboard ─────────────────

class BackupCustomerOut(BaseModel):
    id: str
    name: str
    phone: str | None = None
    type: str
    status: str
    kw_capacity: float | None = None
    quotation: float | None = None
    completed_at: datetime | None = None
    document_count: int
    storage_bytes: int
    storage_mb: float


class BackupCustomersResponse(BaseModel):
    customers: list[BackupCustomerOut]
    total_customers: int
    total_documents: int
    total_storage_bytes: int
    total_storage_mb: float


class StorageStatsOut(BaseModel):
    total_storage_bytes: int
    total_storage_mb: float
    total_files: int
    customers_with_documents: int


class BackupLogOut(BaseModel):
    id: str
    customer_id: str
    customer_name: str
    performed_by: str
    performed_by_username: str
    action_type: str
    storage_freed_bytes: int
    documents_deleted: int
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Download ──────────────────────────────────────────────

class BackupDownloadRequest(BaseModel):
    customer_id: str
    redownload: bool = False


# ── Cleanup ───────────────────────────────────────────────

class CleanupRequest(BaseModel):
    confirm: bool = False


class CleanupDocumentOut(BaseModel):
    reference: str
    category: str
    step_number: int | None = None
    size_bytes: int | None = None


class CleanupPreviewOut(BaseModel):
    customer_id: str
    customer_name: str
    document_count: int
    storage_bytes: int
    storage_mb: float
    documents: list[CleanupDocumentOut]


class CleanupResultOut(BaseModel):
    success: bool
    message: str | None = None
    documents_deleted: int
    documents_failed: int
    storage_freed_bytes: int
    storage_freed_mb: float
    failed_urls: list[str]
