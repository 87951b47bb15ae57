"""Create exception_reports table

Revision ID: 001
Revises: None
Create Date: 2024-01-15 00:00:00.000000+00:00

What:  One row per reported application exception, looked up by the error id
       shown to the end user.
How:   UUID primary key, TIMESTAMP WITH TIME ZONE, JSON context blob.

Rollback: downgrade() drops the table (all reports lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "exception_reports",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="When the exception was reported (UTC)",
        ),

        # Exception
        sa.Column("exception_class", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("user_message", sa.Text(), nullable=True),
        sa.Column("file", sa.String(1024), nullable=True),
        sa.Column("line", sa.Integer(), nullable=True),
        sa.Column("code", sa.Integer(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=False, server_default=sa.text("500")),
        sa.Column(
            "error_id",
            sa.String(36),
            nullable=False,
            comment="UUID shown to the end user for support reference",
        ),

        # Correlation
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),

        # Build & host
        sa.Column("app_version", sa.String(64), nullable=True),
        sa.Column("app_commit", sa.String(64), nullable=True),
        sa.Column("app_build_date", sa.String(64), nullable=True),
        sa.Column("app_role", sa.String(64), nullable=True),
        sa.Column("host_name", sa.String(255), nullable=True),
        sa.Column("host_ip", sa.String(64), nullable=True),

        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("is_retryable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),

        # Wrapped cause
        sa.Column("previous_exception_class", sa.String(255), nullable=True),
        sa.Column("previous_message", sa.Text(), nullable=True),
        sa.Column("previous_file", sa.String(1024), nullable=True),
        sa.Column("previous_line", sa.Integer(), nullable=True),
        sa.Column("previous_code", sa.Integer(), nullable=True),
        sa.Column("previous_stack_trace", sa.Text(), nullable=True),

        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("idx_exception_reports_error_id", "exception_reports", ["error_id"])
    op.create_index(
        "idx_exception_reports_created_at",
        "exception_reports",
        [sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_exception_reports_created_at", table_name="exception_reports")
    op.drop_index("idx_exception_reports_error_id", table_name="exception_reports")
    op.drop_table("exception_reports")
