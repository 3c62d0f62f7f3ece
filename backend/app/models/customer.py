"""Customer - one solar-installation sales engagement inside a workspace.

The customer walks through a fixed 16-step workflow (`current_step`).
Once every step is done the customer is `completed`; taking a backup
moves it to `archived`, after which its documents may be purged from
object storage.

Lifecycle:  active → completed → archived   (archived is terminal)
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class CustomerType(str, enum.Enum):
    FINANCE = "finance"
    CASH = "cash"


class CustomerStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"

    def can_transition_to(self, target: "CustomerStatus") -> bool:
        return target in _FORWARD_TRANSITIONS[self]


_FORWARD_TRANSITIONS: dict[CustomerStatus, frozenset[CustomerStatus]] = {
    CustomerStatus.ACTIVE: frozenset({CustomerStatus.COMPLETED}),
    CustomerStatus.COMPLETED: frozenset({CustomerStatus.ARCHIVED}),
    CustomerStatus.ARCHIVED: frozenset(),
}

TOTAL_STEPS = 16


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Contact ────────────────────────────────────────────────
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)

    # ── Workflow ───────────────────────────────────────────────
    type: Mapped[str] = mapped_column(String(20), default=CustomerType.FINANCE.value)
    status: Mapped[str] = mapped_column(
        String(20), default=CustomerStatus.ACTIVE.value, index=True
    )
    current_step: Mapped[int] = mapped_column(Integer, default=1)

    # ── Financial ──────────────────────────────────────────────
    kw_capacity: Mapped[float | None] = mapped_column(Float)
    quotation: Mapped[float | None] = mapped_column(Float)

    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    steps: Mapped[list["StepData"]] = relationship(  # noqa: F821
        back_populates="customer", order_by="StepData.step_number"
    )
