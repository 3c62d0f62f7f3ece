"""Workspace-scoped reads and writes used by the backup flows.

Every query filters on `workspace_id`; a customer from another workspace
is indistinguishable from one that does not exist.
"""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.backup_log import BackupAction, BackupLog
from app.models.customer import Customer, CustomerStatus
from app.models.step_data import StepData


async def get_customer(db: AsyncSession, customer_id: str, workspace_id: str) -> Customer | None:
    result = await db.execute(
        select(Customer).where(
            Customer.id == customer_id,
            Customer.workspace_id == workspace_id,
        )
    )
    return result.scalar_one_or_none()


async def get_steps(db: AsyncSession, customer_id: str, workspace_id: str) -> list[StepData]:
    result = await db.execute(
        select(StepData)
        .where(
            StepData.customer_id == customer_id,
            StepData.workspace_id == workspace_id,
        )
        .order_by(StepData.step_number)
    )
    return list(result.scalars().all())


async def mark_archived(db: AsyncSession, customer_id: str, workspace_id: str) -> bool:
    """Move a completed customer to archived.

    A single conditional UPDATE: only a row still `completed` matches, so
    of two concurrent callers exactly one gets True.
    """
    result = await db.execute(
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.workspace_id == workspace_id,
            Customer.status == CustomerStatus.COMPLETED.value,
        )
        .values(status=CustomerStatus.ARCHIVED.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def record_backup_log(
    db: AsyncSession,
    *,
    customer: Customer,
    performed_by: str,
    performed_by_username: str,
    action: BackupAction,
    documents_deleted: int = 0,
    storage_freed_bytes: int = 0,
) -> BackupLog:
    entry = BackupLog(
        customer_id=customer.id,
        customer_name=customer.name,
        workspace_id=customer.workspace_id,
        performed_by=performed_by,
        performed_by_username=performed_by_username,
        action_type=action.value,
        documents_deleted=documents_deleted,
        storage_freed_bytes=storage_freed_bytes,
    )
    db.add(entry)
    await db.flush()
    return entry


async def has_cleanup_log(db: AsyncSession, customer_id: str, workspace_id: str) -> bool:
    result = await db.execute(
        select(func.count(BackupLog.id)).where(
            BackupLog.customer_id == customer_id,
            BackupLog.workspace_id == workspace_id,
            BackupLog.action_type == BackupAction.CLEANUP.value,
        )
    )
    return (result.scalar() or 0) > 0


async def list_customers_by_status(
    db: AsyncSession,
    workspace_id: str,
    status: CustomerStatus,
) -> list[Customer]:
    result = await db.execute(
        select(Customer)
        .where(
            Customer.workspace_id == workspace_id,
            Customer.status == status.value,
        )
        .order_by(Customer.updated_at.desc())
    )
    return list(result.scalars().all())


async def list_backup_logs(
    db: AsyncSession,
    workspace_id: str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[BackupLog], int]:
    """Newest first, with the total row count for pagination."""
    base = select(BackupLog).where(BackupLog.workspace_id == workspace_id)
    total = (
        await db.execute(select(func.count()).select_from(base.subquery()))
    ).scalar() or 0

    result = await db.execute(
        base.order_by(BackupLog.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total
