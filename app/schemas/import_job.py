"""Bulk import wizard schemas."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.importer import ImportProfile, ImportWizardSession
from app.importer.types import (
    DuplicateDecision,
    EnrollmentReport,
    ImportedRow,
    ImportResult,
    RowRecord,
    TargetKind,
    ValidationResult,
    dump_resolved_value,
)
from app.importer.value_resolver import ValueEntry
from app.models.import_job import ImportStatus, ImportType

Cell = str | int | float | bool | None


class ImportError(BaseModel):
    """An error from import processing."""

    row: int
    field: str | None = None
    value: str | None = None
    message: str


class ImportJobResponse(BaseModel):
    """Schema for import job response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    import_type: ImportType
    file_name: str
    status: ImportStatus
    total_rows: int | None = None
    processed_rows: int = 0
    success_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: list[ImportError] = []
    column_mapping: dict[str, Any] = {}
    enrollment_summary: dict[str, Any] | None = None
    created_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime


# === Profiles ===


class ImportFieldInfo(BaseModel):
    """Information about a system field for mapping."""

    key: str
    label: str
    required: bool = False
    description: str | None = None


class RelationalFieldInfo(BaseModel):
    key: str
    label: str
    depends_on: str | None = None
    multi_valued: bool = False
    search_only: bool = False


class ImportProfileResponse(BaseModel):
    key: str
    title: str
    fields: list[ImportFieldInfo]
    relational_fields: list[RelationalFieldInfo]
    supports_duplicates: bool
    enrollment_capable: bool

    @classmethod
    def from_profile(cls, profile: ImportProfile) -> "ImportProfileResponse":
        return cls(
            key=profile.key,
            title=profile.title,
            fields=[
                ImportFieldInfo(key=f.key, label=f.label, required=f.required, description=f.description)
                for f in profile.fields
            ],
            relational_fields=[
                RelationalFieldInfo(
                    key=key,
                    label=config.label,
                    depends_on=config.depends_on,
                    multi_valued=bool(config.separator),
                    search_only=config.search_only,
                )
                for key, config in profile.relational_fields.items()
            ],
            supports_duplicates=profile.supports_duplicates,
            enrollment_capable=profile.enrollment_capable,
        )


# === Session ===


class ColumnMappingUpdate(BaseModel):
    """Column assignments to apply; a null column unmaps the field."""

    fields: dict[str, int | None] = Field(default_factory=dict)
    custom_fields: dict[str, int | None] = Field(default_factory=dict)


class ImportSessionResponse(BaseModel):
    """Where an import wizard stands."""

    job_id: str
    import_type: str
    step: str
    steps: list[str]
    file_name: str | None = None
    headers: list[str] = []
    preview: list[list[Cell]] = []
    total_rows: int = 0
    fields: dict[str, int] = {}
    custom_fields: dict[str, int] = {}
    auto_matched: list[str] = []
    missing_required: list[str] = []

    @classmethod
    def from_session(cls, session: ImportWizardSession, preview_rows: int) -> "ImportSessionResponse":
        dataset = session.dataset
        return cls(
            job_id=session.id,
            import_type=session.profile.key,
            step=session.step.value,
            steps=[s.value for s in session.steps],
            file_name=dataset.file_name if dataset else None,
            headers=list(dataset.headers) if dataset else [],
            preview=dataset.preview(preview_rows) if dataset else [],
            total_rows=dataset.total_rows if dataset else 0,
            fields=dict(session.mapping.fields),
            custom_fields=dict(session.mapping.custom_fields),
            auto_matched=sorted(session.auto_matched),
            missing_required=session.missing_required_fields(),
        )


# === Value mapping ===


class OptionResponse(BaseModel):
    id: str
    name: str


class OptionSearchRequest(BaseModel):
    field: str
    term: str


class ValueEntryResponse(BaseModel):
    """One distinct raw value of a relational column."""

    field: str
    path: list[str]
    raw: str
    value: str | None = None
    auto_matched: bool = False
    blocked: bool = False
    options: list[OptionResponse] = []

    @classmethod
    def from_entry(cls, entry: ValueEntry) -> "ValueEntryResponse":
        return cls(
            field=entry.field,
            path=entry.path,
            raw=entry.raw,
            value=dump_resolved_value(entry.value) if entry.value is not None else None,
            auto_matched=entry.auto_matched,
            blocked=entry.blocked,
            options=[OptionResponse(id=o.id, name=o.name) for o in entry.options],
        )


class ValueMappingUpdate(BaseModel):
    """A decision for one value. ``value`` is an id, ``__skip__``, ``__create__`` or null to clear."""

    field: str
    path: list[str] = Field(..., min_length=1)
    value: str | None = None


# === Validation ===


class RowRecordResponse(BaseModel):
    row_number: int
    errors: list[str] = []
    warnings: list[str] = []
    duplicate_id: str | None = None
    decision: DuplicateDecision | None = None
    extracted: dict[str, Any] = {}

    @classmethod
    def from_record(cls, record: RowRecord, decision: DuplicateDecision | None = None) -> "RowRecordResponse":
        return cls(
            row_number=record.row_number,
            errors=list(record.errors),
            warnings=list(record.warnings),
            duplicate_id=record.duplicate_id,
            decision=decision,
            extracted=dict(record.extracted),
        )


class ValidationResponse(BaseModel):
    total_rows: int
    importable_count: int
    valid: list[RowRecordResponse]
    invalid: list[RowRecordResponse]
    duplicates: list[RowRecordResponse]

    @classmethod
    def from_result(
        cls,
        result: ValidationResult,
        decisions: dict[int, DuplicateDecision],
    ) -> "ValidationResponse":
        return cls(
            total_rows=result.total_rows,
            importable_count=result.importable_count,
            valid=[RowRecordResponse.from_record(r) for r in result.valid],
            invalid=[RowRecordResponse.from_record(r) for r in result.invalid],
            duplicates=[
                RowRecordResponse.from_record(r, decisions.get(r.ref.source_row_index))
                for r in result.duplicates
            ],
        )


class DuplicateDecisionUpdate(BaseModel):
    """Skip or update a duplicate row; without ``row_number`` it applies to all of them."""

    row_number: int | None = None
    decision: DuplicateDecision


# === Import ===


class ImportedRowResponse(BaseModel):
    row_number: int
    entity_id: str | None = None
    error: str | None = None

    @classmethod
    def from_row(cls, row: ImportedRow) -> "ImportedRowResponse":
        return cls(row_number=row.row_number, entity_id=row.entity_id, error=row.error)


class ImportResultResponse(BaseModel):
    success_count: int
    updated_count: int
    failed_count: int
    skipped_count: int
    failed: list[ImportedRowResponse] = []
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_result(cls, result: ImportResult) -> "ImportResultResponse":
        return cls(
            success_count=len(result.success),
            updated_count=len(result.updated),
            failed_count=len(result.failed),
            skipped_count=len(result.skipped_duplicates),
            failed=[ImportedRowResponse.from_row(r) for r in result.failed],
            started_at=result.started_at,
            finished_at=result.finished_at,
        )


# === Enrollment ===


class EnrollmentTargetRequest(BaseModel):
    kind: TargetKind
    id: UUID
    name: str | None = None


class EnrollRequest(BaseModel):
    """Targets to enroll every imported student in; empty means use each row's own course or class."""

    targets: list[EnrollmentTargetRequest] = Field(default_factory=list)
    effective_date: date | None = None


class EnrollmentFailureResponse(BaseModel):
    student_id: str
    reason: str
    row_number: int | None = None


class TargetSummaryResponse(BaseModel):
    kind: TargetKind
    id: str
    name: str | None = None
    successful: int
    already_enrolled: int
    failed_count: int
    failures: list[EnrollmentFailureResponse] = []


class EnrollmentReportResponse(BaseModel):
    successful_enrollments: int
    already_enrolled: int
    failed: int
    total: int
    details: list[TargetSummaryResponse] = []

    @classmethod
    def from_report(cls, report: EnrollmentReport) -> "EnrollmentReportResponse":
        return cls(
            successful_enrollments=report.successful_enrollments,
            already_enrolled=report.already_enrolled,
            failed=report.failed,
            total=report.total,
            details=[
                TargetSummaryResponse(
                    kind=summary.target.kind,
                    id=summary.target.id,
                    name=summary.target.name,
                    successful=summary.successful,
                    already_enrolled=summary.already_enrolled,
                    failed_count=summary.failed_count,
                    failures=[
                        EnrollmentFailureResponse(
                            student_id=f.student_id, reason=f.reason, row_number=f.row_number
                        )
                        for f in summary.failures
                    ],
                )
                for summary in report.details
            ],
        )
