"""create tasks and task_reminder_logs

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261019_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Task table with reminder columns, plus the append-only reminder log."""
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("quote_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("due_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("assigned_to", sa.String(255), nullable=True),
        sa.Column("assigned_phone", sa.String(32), nullable=True),
        sa.Column("reminder_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_channel", sa.String(16), nullable=False, server_default="whatsapp"),
        sa.Column("reminder_frequency", sa.String(16), nullable=False, server_default="once"),
        sa.Column("next_reminder_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reminder_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("reminder_error", sa.Text(), nullable=True),
        sa.Column("reminder_claimed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tasks_quote_id", "tasks", ["quote_id"])
    op.create_index("ix_tasks_company_id", "tasks", ["company_id"])
    op.create_index(
        "ix_tasks_due_reminders",
        "tasks",
        ["reminder_enabled", "reminder_channel", "reminder_status", "next_reminder_at"],
    )

    # No FK to tasks: log rows are kept after a task is deleted.
    op.create_table(
        "task_reminder_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False, server_default="whatsapp"),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("message_body", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("direction", sa.String(10), nullable=False, server_default="outbound"),
        sa.Column("reply_from", sa.String(64), nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_task_reminder_logs_task_id", "task_reminder_logs", ["task_id"])


def downgrade() -> None:
    op.drop_index("ix_task_reminder_logs_task_id", table_name="task_reminder_logs")
    op.drop_table("task_reminder_logs")
    op.drop_index("ix_tasks_due_reminders", table_name="tasks")
    op.drop_index("ix_tasks_company_id", table_name="tasks")
    op.drop_index("ix_tasks_quote_id", table_name="tasks")
    op.drop_table("tasks")
