"""Bulk spreadsheet import service.

Owns the wizard sessions of in-progress imports (one per BulkImportJob) and
keeps the job row in step with what the session does.
"""

import logging
import time
from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import NotFoundException, WizardStateError
from app.importer import ImportWizardSession, WizardOptions, get_profile
from app.importer.normalizer import SpreadsheetParser
from app.importer.types import EnrollmentReport, EnrollmentTarget, ImportResult
from app.models import BulkImportJob
from app.services.capabilities import build_capabilities
from app.utils.tenant_context import get_uploader_id, get_tenant_id

logger = logging.getLogger(__name__)


class ImportService:
    """Service for handling bulk spreadsheet imports."""

    def __init__(
        self,
        options: WizardOptions | None = None,
        parser: SpreadsheetParser | None = None,
        session_ttl_seconds: float | None = None,
    ):
        self.options = options or WizardOptions.from_settings(settings)
        self.parser = parser or SpreadsheetParser(max_rows=settings.import_max_rows)
        self.session_ttl_seconds = (
            session_ttl_seconds if session_ttl_seconds is not None else settings.import_session_ttl_minutes * 60
        )
        self._sessions: dict[UUID, ImportWizardSession] = {}

    async def create_job(
        self,
        db: AsyncSession,
        file_name: str,
        import_type: str,
        content: bytes,
    ) -> tuple[BulkImportJob, ImportWizardSession]:
        """Parse an upload, create its job and open a wizard session at column mapping."""
        tenant_id = get_tenant_id()
        profile = get_profile(import_type)
        dataset = self.parser.parse(content, file_name)

        job = BulkImportJob(
            tenant_id=tenant_id,
            import_type=profile.key,
            file_name=file_name,
            total_rows=dataset.total_rows,
            created_by=get_uploader_id(),
        )
        db.add(job)
        await db.flush()
        await db.refresh(job)

        session = ImportWizardSession(
            profile,
            str(tenant_id),
            build_capabilities(db),
            options=self.options,
            parser=self.parser,
            session_id=str(job.id),
        )
        session.load_dataset(dataset)
        await session.advance()

        self._evict_expired()
        self._sessions[job.id] = session
        logger.info(f"Import job {job.id} created: {profile.key} from {file_name}, {dataset.total_rows} rows")
        return job, session

    async def get_job(self, db: AsyncSession, job_id: UUID) -> BulkImportJob:
        """Get an import job by ID."""
        tenant_id = get_tenant_id()

        result = await db.execute(
            select(BulkImportJob).where(
                BulkImportJob.id == job_id,
                BulkImportJob.tenant_id == tenant_id,
            )
        )
        job = result.scalar_one_or_none()
        if not job:
            raise NotFoundException("Import job")
        return job

    def find_session(self, job_id: UUID) -> ImportWizardSession | None:
        """Get the in-memory session of a job without binding it."""
        return self._sessions.get(job_id)

    async def get_session(
        self,
        db: AsyncSession,
        job_id: UUID,
    ) -> tuple[BulkImportJob, ImportWizardSession]:
        """Get a job and its live session, bound to this request's database session."""
        self._evict_expired()
        job = await self.get_job(db, job_id)
        session = self._sessions.get(job.id)
        if session is None or session.tenant_id != str(job.tenant_id):
            raise NotFoundException("Import session")
        session.bind(build_capabilities(db))
        return job, session

    def active_session_count(self) -> int:
        self._evict_expired()
        return len(self._sessions)

    def _evict_expired(self) -> None:
        cutoff = time.monotonic() - self.session_ttl_seconds
        for job_id in [k for k, s in self._sessions.items() if s.touched_at < cutoff]:
            logger.info(f"Import session {job_id} expired")
            del self._sessions[job_id]

    async def run_import(self, db: AsyncSession, job_id: UUID) -> tuple[BulkImportJob, ImportResult]:
        """Run the import of a validated session and record the outcome on its job."""
        job, session = await self.get_session(db, job_id)
        total = session.validation.importable_count if session.validation else 0
        job.mark_processing(total, session.mapping.as_dict())

        async def track(processed: int, _total: int) -> None:
            job.processed_rows = processed

        try:
            result = await session.run_import(on_progress=track)
        except WizardStateError:
            raise
        except Exception as e:
            logger.exception(f"Import job {job_id} failed")
            job.mark_failed(str(e))
            await db.commit()
            raise

        job.record_import(result, session.validation.invalid)
        await db.flush()

        return job, result

    async def run_enrollment(
        self,
        db: AsyncSession,
        job_id: UUID,
        targets: Sequence[EnrollmentTarget] | None = None,
        effective_date: date | None = None,
    ) -> EnrollmentReport:
        """Enroll the students of a finished import."""
        job, session = await self.get_session(db, job_id)
        report = await session.run_enrollment(targets, effective_date=effective_date)
        job.record_enrollment(report)
        await db.flush()
        return report

    async def list_jobs(
        self,
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[BulkImportJob], int]:
        """List import jobs for the current tenant."""
        tenant_id = get_tenant_id()

        query = select(BulkImportJob).where(BulkImportJob.tenant_id == tenant_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = query.order_by(BulkImportJob.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await db.execute(query)
        jobs = list(result.scalars().all())

        return jobs, total


# Singleton instance
_import_service: ImportService | None = None


def get_import_service() -> ImportService:
    """Get the import service singleton."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
