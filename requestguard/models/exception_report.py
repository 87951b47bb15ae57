"""
RequestGuard: ExceptionReport SQLAlchemy Model
================================================

What:  ORM model for the `exception_reports` table.
How:   One row per reported AppError instance, inserted by ExceptionService
       and never updated. Flat columns mirror the exception and its wrapped
       cause (previous_*); `context` holds the structured request/user blob.
Who:   ExceptionService (insert), support tooling (lookup by error_id).

Query Patterns:
    - Support lookup: WHERE error_id = :id  → idx_exception_reports_error_id
    - Recent errors:  ORDER BY created_at DESC → idx_exception_reports_created_at
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TIMESTAMP

from requestguard.database import Base


class ExceptionReport(Base):
    __tablename__ = "exception_reports"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the exception was reported (UTC)",
    )

    # ── Exception ─────────────────────────────────────────────────────────
    exception_class: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    error_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        comment="UUID shown to the end user for support reference",
    )

    # ── Correlation ───────────────────────────────────────────────────────
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # ── Build & host ──────────────────────────────────────────────────────
    app_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    app_commit: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    app_build_date: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    app_role: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    host_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    host_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stack_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # ── Wrapped cause ─────────────────────────────────────────────────────
    previous_exception_class: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    previous_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    previous_file: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    previous_line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    previous_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    previous_stack_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_exception_reports_error_id", "error_id"),
        Index("idx_exception_reports_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ExceptionReport(error_id='{self.error_id}', "
            f"class='{self.exception_class}', status={self.status_code})>"
        )
