"""track when repair last looked at a report

Revision ID: 0002_repair_attempt_cursor
Revises: 0001_report_engine_schema
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0002_repair_attempt_cursor"
down_revision: Union[str, None] = "0001_report_engine_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("lab_reports", sa.Column("repair_attempted_at", sa.DateTime(), nullable=True))
    op.create_index("ix_lab_reports_repair_attempted_at", "lab_reports", ["repair_attempted_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_lab_reports_repair_attempted_at", table_name="lab_reports")
    with op.batch_alter_table("lab_reports") as batch_op:
        batch_op.drop_column("repair_attempted_at")
