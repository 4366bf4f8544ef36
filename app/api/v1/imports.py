"""Bulk import API endpoints.

Each job carries one wizard session; the endpoints below drive it step by step.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.exceptions import DatasetError, WizardStateError
from app.importer import PROFILES, WizardStep
from app.importer.types import EnrollmentTarget, parse_resolved_value
from app.models.import_job import ImportType
from app.schemas.common import APIResponse, PaginationMeta
from app.schemas.import_job import (
    ColumnMappingUpdate,
    DuplicateDecisionUpdate,
    EnrollmentReportResponse,
    EnrollRequest,
    ImportJobResponse,
    ImportProfileResponse,
    ImportResultResponse,
    ImportSessionResponse,
    OptionResponse,
    OptionSearchRequest,
    ValidationResponse,
    ValueEntryResponse,
    ValueMappingUpdate,
)
from app.services.import_service import get_import_service

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = (".csv", ".xlsx")


def _session_response(session) -> ImportSessionResponse:
    return ImportSessionResponse.from_session(session, settings.import_preview_rows)


def _validation_response(session) -> ValidationResponse:
    return ValidationResponse.from_result(session.validation, session.decisions)


@router.get("/profiles", response_model=APIResponse)
async def get_profiles():
    """Get the importable entity types and their fields."""
    return APIResponse(
        status="success",
        data=[ImportProfileResponse.from_profile(profile) for profile in PROFILES.values()],
    )


@router.post("/upload", response_model=APIResponse)
async def upload_file(
    file: UploadFile = File(...),
    import_type: ImportType = Form(...),
    db: AsyncSession = Depends(get_db),
):
    """Upload a CSV or Excel file and start an import wizard for it."""
    service = get_import_service()

    if not file.filename or not file.filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise DatasetError("File must be a CSV or Excel (.xlsx) file")

    content = await file.read()
    if len(content) > settings.max_upload_size_bytes:
        raise DatasetError(f"File is larger than {settings.max_upload_size_mb} MB")

    _, session = await service.create_job(
        db,
        file_name=file.filename,
        import_type=import_type.value,
        content=content,
    )

    return APIResponse(
        status="success",
        data=_session_response(session),
        message="File uploaded. Please review the column mapping.",
    )


@router.get("/{job_id}", response_model=APIResponse)
async def get_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get an import job, with its live wizard session when there is one."""
    service = get_import_service()

    job = await service.get_job(db, job_id)
    session = service.find_session(job.id)

    return APIResponse(
        status="success",
        data={
            "job": ImportJobResponse.model_validate(job),
            "session": _session_response(session) if session else None,
        },
    )


@router.put("/{job_id}/columns", response_model=APIResponse)
async def update_columns(
    job_id: UUID,
    data: ColumnMappingUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Assign spreadsheet columns to fields (null unmaps a field)."""
    _, session = await get_import_service().get_session(db, job_id)

    for field, column in data.fields.items():
        session.map_column(field, column)
    for name, column in data.custom_fields.items():
        session.map_custom_field(name, column)

    return APIResponse(status="success", data=_session_response(session))


@router.post("/{job_id}/next", response_model=APIResponse)
async def next_step(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Move the wizard one step forward."""
    _, session = await get_import_service().get_session(db, job_id)
    step = await session.advance()
    return APIResponse(
        status="success",
        data=_session_response(session),
        message=f"Moved to {step.value}",
    )


@router.post("/{job_id}/back", response_model=APIResponse)
async def previous_step(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Move the wizard one step back, keeping the mappings."""
    _, session = await get_import_service().get_session(db, job_id)
    step = session.back()
    return APIResponse(
        status="success",
        data=_session_response(session),
        message=f"Moved back to {step.value}",
    )


@router.post("/{job_id}/options", response_model=APIResponse)
async def search_options(
    job_id: UUID,
    data: OptionSearchRequest,
    db: AsyncSession = Depends(get_db),
):
    """Search the existing entities a relational value can be mapped to."""
    _, session = await get_import_service().get_session(db, job_id)
    options = await session.search_options(data.field, data.term)
    return APIResponse(
        status="success",
        data=[OptionResponse(id=o.id, name=o.name) for o in options],
    )


@router.get("/{job_id}/values", response_model=APIResponse)
async def get_values(
    job_id: UUID,
    field: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Get the distinct values of relational columns and how each is resolved."""
    _, session = await get_import_service().get_session(db, job_id)
    resolver = session.resolver
    fields = [field] if field else resolver.active_fields()

    entries = []
    for name in fields:
        entries.extend(ValueEntryResponse.from_entry(entry) for entry in resolver.entries(name))

    return APIResponse(status="success", data=entries)


@router.put("/{job_id}/values", response_model=APIResponse)
async def update_values(
    job_id: UUID,
    data: list[ValueMappingUpdate],
    db: AsyncSession = Depends(get_db),
):
    """Map raw values to existing entities, skip them, or clear a decision (null value)."""
    _, session = await get_import_service().get_session(db, job_id)

    touched = []
    for update in data:
        if update.value is None:
            session.clear_value_mapping(update.field, update.path)
        else:
            session.set_value_mapping(update.field, update.path, parse_resolved_value(update.value))
        if update.field not in touched:
            touched.append(update.field)

    entries = []
    for name in touched:
        entries.extend(ValueEntryResponse.from_entry(entry) for entry in session.resolver.entries(name))

    return APIResponse(status="success", data=entries)


@router.post("/{job_id}/validate", response_model=APIResponse)
async def validate_rows(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Validate every row and classify it as valid, invalid or duplicate.

    From column mapping this also passes through value mapping, leaving
    values without a match unresolved.
    """
    _, session = await get_import_service().get_session(db, job_id)

    while session.step in (WizardStep.COLUMN_MAPPING, WizardStep.VALUE_MAPPING):
        await session.advance()
    if session.validation is None:
        raise WizardStateError(f"Validation is not available at step '{session.step.value}'")

    result = session.validation
    return APIResponse(
        status="success",
        data=_validation_response(session),
        message=(
            f"{len(result.valid)} valid, {len(result.invalid)} invalid, "
            f"{len(result.duplicates)} duplicates"
        ),
    )


@router.put("/{job_id}/duplicates", response_model=APIResponse)
async def decide_duplicates(
    job_id: UUID,
    data: DuplicateDecisionUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Choose whether duplicate rows skip or update the existing record."""
    _, session = await get_import_service().get_session(db, job_id)

    if data.row_number is None:
        session.set_all_duplicate_decisions(data.decision)
    else:
        session.set_duplicate_decision(data.row_number, data.decision)

    return APIResponse(status="success", data=_validation_response(session))


@router.post("/{job_id}/import", response_model=APIResponse)
async def run_import(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Import the validated rows."""
    service = get_import_service()
    _, session = await service.get_session(db, job_id)

    if session.step == WizardStep.VALIDATION:
        await session.advance()
    job, result = await service.run_import(db, job_id)

    return APIResponse(
        status="success",
        data={
            "job": ImportJobResponse.model_validate(job),
            "result": ImportResultResponse.from_result(result),
        },
        message=(
            f"Import completed: {len(result.success)} created, {len(result.updated)} updated, "
            f"{len(result.failed)} failed"
        ),
    )


@router.post("/{job_id}/enroll", response_model=APIResponse)
async def enroll_students(
    job_id: UUID,
    data: EnrollRequest,
    db: AsyncSession = Depends(get_db),
):
    """Enroll the imported students in courses or classes."""
    service = get_import_service()
    _, session = await service.get_session(db, job_id)

    if session.step == WizardStep.IMPORT:
        await session.advance()

    targets = [EnrollmentTarget(kind=t.kind, id=str(t.id), name=t.name) for t in data.targets]
    report = await service.run_enrollment(db, job_id, targets or None, data.effective_date)

    return APIResponse(
        status="success",
        data=EnrollmentReportResponse.from_report(report),
        message=(
            f"{report.successful_enrollments} enrolled, {report.already_enrolled} already enrolled, "
            f"{report.failed} failed"
        ),
    )


@router.get("", response_model=APIResponse)
async def list_jobs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List import jobs."""
    service = get_import_service()

    jobs, total = await service.list_jobs(db, page=page, page_size=page_size)

    return APIResponse(
        status="success",
        data=[
            ImportJobResponse.model_validate(job).model_copy(update={"errors": [], "column_mapping": {}})
            for job in jobs
        ],
        pagination=PaginationMeta.build(page, page_size, total),
    )
