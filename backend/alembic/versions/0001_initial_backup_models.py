"""Initial schema - customers, step data and the backup log.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.Text()),
        sa.Column("type", sa.String(20), server_default="finance"),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("current_step", sa.Integer(), server_default="1"),
        sa.Column("kw_capacity", sa.Float()),
        sa.Column("quotation", sa.Float()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_customers_workspace_id", "customers", ["workspace_id"])
    op.create_index("ix_customers_status", "customers", ["status"])

    op.create_table(
        "step_data",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "customer_id",
            sa.String(36),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("workspace_id", sa.String(36), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("data", sa.JSON(), server_default="{}"),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("customer_id", "step_number", name="uq_step_data_customer_step"),
    )
    op.create_index("ix_step_data_customer_id", "step_data", ["customer_id"])
    op.create_index("ix_step_data_workspace_id", "step_data", ["workspace_id"])

    op.create_table(
        "backup_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("workspace_id", sa.String(36), nullable=False),
        sa.Column("performed_by", sa.String(36), nullable=False),
        sa.Column("performed_by_username", sa.String(100), nullable=False),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("storage_freed_bytes", sa.BigInteger(), server_default="0"),
        sa.Column("documents_deleted", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_backup_logs_customer_id", "backup_logs", ["customer_id"])
    op.create_index("ix_backup_logs_workspace_id", "backup_logs", ["workspace_id"])
    op.create_index("ix_backup_logs_action_type", "backup_logs", ["action_type"])
    op.create_index("ix_backup_logs_created_at", "backup_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("backup_logs")
    op.drop_table("step_data")
    op.drop_table("customers")
