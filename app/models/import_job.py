"""Bulk import job model: the durable record of one run of the import wizard.

The wizard session itself lives in memory; the job is what remains once the
session is gone. It keeps the column mapping that was used, the counts of
what the import did, the rows it refused and the enrollment outcome.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from uuid_extensions import uuid7

from app.models.base import Base, JSONType, TimestampMixin

MAX_STORED_ERRORS = 200


class ImportType(str, Enum):
    """Entity kinds a spreadsheet can be imported as."""

    STUDENTS = "students"
    COURSES = "courses"
    TEMPLATES = "templates"


class ImportStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BulkImportJob(Base, TimestampMixin):
    """Tracks one uploaded file from parsing to enrollment."""

    __tablename__ = "bulk_import_jobs"
    __table_args__ = (Index("idx_imports_tenant", "tenant_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid7,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    import_type: Mapped[str] = mapped_column(String(30), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ImportStatus.PENDING.value,
    )
    total_rows: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    column_mapping: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    enrollment_summary: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def add_error(self, row: int, field: str | None, value: str | None, message: str) -> None:
        """Record a refused row. Only the first ``MAX_STORED_ERRORS`` are kept, all are counted."""
        errors = list(self.errors or [])
        if len(errors) < MAX_STORED_ERRORS:
            errors.append({
                "row": row,
                "field": field,
                "value": value,
                "message": message,
            })
        self.errors = errors
        self.error_count += 1

    def mark_processing(self, importable_rows: int, column_mapping: dict) -> None:
        self.status = ImportStatus.PROCESSING.value
        self.total_rows = importable_rows
        self.column_mapping = column_mapping

    def record_import(self, result, invalid_rows) -> None:
        """Copy an import result, and the rows validation refused, onto the job.

        ``result`` is an ``ImportResult`` and ``invalid_rows`` the invalid
        ``RowRecord``s of the validation it ran on.
        """
        self.processed_rows = result.processed
        self.success_count = len(result.success)
        self.updated_count = len(result.updated)
        self.skipped_count = len(result.skipped_duplicates)
        for record in invalid_rows:
            self.add_error(record.row_number, "validation", None, "; ".join(record.errors))
        for row in result.failed:
            self.add_error(row.row_number, None, None, row.error or "Unknown error")
        self.status = ImportStatus.COMPLETED.value
        self.completed_at = datetime.now(timezone.utc)

    def record_enrollment(self, report) -> None:
        """Keep the totals of an ``EnrollmentReport`` run for this job's students."""
        self.enrollment_summary = {
            "successful_enrollments": report.successful_enrollments,
            "already_enrolled": report.already_enrolled,
            "failed": report.failed,
            "targets": [str(summary.target) for summary in report.details],
        }

    def mark_failed(self, error_message: str | None = None) -> None:
        self.status = ImportStatus.FAILED.value
        self.completed_at = datetime.now(timezone.utc)
        if error_message:
            self.add_error(0, "system", "", error_message)
