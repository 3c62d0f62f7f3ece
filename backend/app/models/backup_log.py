"""BackupLog - append-only audit trail of backup downloads and storage cleanups.

One row per download or cleanup attempt. Rows are never updated or
deleted; customer name and acting username are denormalised so the log
stays readable after the customer is gone.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class BackupAction(str, enum.Enum):
    DOWNLOAD = "download"
    CLEANUP = "cleanup"


class BackupLog(Base):
    __tablename__ = "backup_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Target ─────────────────────────────────────────────────
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    workspace_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Who ────────────────────────────────────────────────────
    performed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    performed_by_username: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── What ───────────────────────────────────────────────────
    action_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    storage_freed_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    documents_deleted: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
