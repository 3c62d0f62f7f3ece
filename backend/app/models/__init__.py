"""Aggregate model imports for Alembic auto-detection."""

from app.models.customer import Customer, CustomerStatus, CustomerType  # noqa: F401
from app.models.step_data import StepData  # noqa: F401
from app.models.backup_log import BackupAction, BackupLog  # noqa: F401
