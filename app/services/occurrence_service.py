"""Class occurrence service: dated classes and their rosters."""

import logging
import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundException
from app.models import (
    ClassOccurrence,
    ClassTemplate,
    CourseEnrollment,
    EnrollmentStatus,
    OccurrenceStatus,
    OccurrenceStudent,
    course_source,
)
from app.services.course_service import CourseService, get_course_service
from app.utils.tenant_context import get_tenant_id

logger = logging.getLogger(__name__)


class OccurrenceService:
    """Service for class occurrences and their rosters."""

    def __init__(self, course_service: CourseService | None = None):
        self.course_service = course_service or get_course_service()

    async def get_occurrences(
        self,
        db: AsyncSession,
        from_date: date | None = None,
        to_date: date | None = None,
        template_id: uuid.UUID | None = None,
        include_cancelled: bool = False,
    ) -> list[ClassOccurrence]:
        """Get occurrences in a date range, ordered by date and time."""
        tenant_id = get_tenant_id()

        query = select(ClassOccurrence).where(
            ClassOccurrence.tenant_id == tenant_id,
            ClassOccurrence.deleted_at.is_(None),
        )
        if from_date:
            query = query.where(ClassOccurrence.date >= from_date)
        if to_date:
            query = query.where(ClassOccurrence.date <= to_date)
        if template_id:
            query = query.where(ClassOccurrence.template_id == template_id)
        if not include_cancelled:
            query = query.where(ClassOccurrence.status != OccurrenceStatus.CANCELLED.value)

        result = await db.execute(query.order_by(ClassOccurrence.date, ClassOccurrence.start_time))
        return list(result.scalars().all())

    async def search_occurrences(
        self,
        db: AsyncSession,
        term: str,
        from_date: date | None = None,
        limit: int = 50,
    ) -> list[ClassOccurrence]:
        """Find upcoming occurrences by name."""
        tenant_id = get_tenant_id()

        query = (
            select(ClassOccurrence)
            .where(
                ClassOccurrence.tenant_id == tenant_id,
                ClassOccurrence.deleted_at.is_(None),
                ClassOccurrence.status != OccurrenceStatus.CANCELLED.value,
                ClassOccurrence.date >= (from_date or date.today()),
                ClassOccurrence.name.ilike(f"%{term}%"),
            )
            .order_by(ClassOccurrence.date, ClassOccurrence.start_time)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_occurrence(self, db: AsyncSession, occurrence_id: uuid.UUID) -> ClassOccurrence:
        """Get a single occurrence by ID."""
        tenant_id = get_tenant_id()

        query = select(ClassOccurrence).where(
            ClassOccurrence.id == occurrence_id,
            ClassOccurrence.tenant_id == tenant_id,
            ClassOccurrence.deleted_at.is_(None),
        )
        occurrence = (await db.execute(query)).scalar_one_or_none()

        if not occurrence:
            raise NotFoundException("Class occurrence")

        return occurrence

    async def create_occurrence(
        self,
        db: AsyncSession,
        template: ClassTemplate,
        on_date: date,
    ) -> ClassOccurrence:
        """Create one dated occurrence of a template."""
        occurrence = ClassOccurrence(
            tenant_id=template.tenant_id,
            template_id=template.id,
            name=template.name,
            teacher_id=template.teacher_id,
            location_id=template.location_id,
            date=on_date,
            start_time=template.start_time,
            duration=template.duration,
        )
        db.add(occurrence)
        await db.flush()
        return occurrence

    async def get_future_occurrences(
        self,
        db: AsyncSession,
        template_id: uuid.UUID,
        from_date: date,
    ) -> list[ClassOccurrence]:
        """Get the scheduled occurrences of a template on or after a date."""
        tenant_id = get_tenant_id()

        query = (
            select(ClassOccurrence)
            .where(
                ClassOccurrence.tenant_id == tenant_id,
                ClassOccurrence.deleted_at.is_(None),
                ClassOccurrence.template_id == template_id,
                ClassOccurrence.status == OccurrenceStatus.SCHEDULED.value,
                ClassOccurrence.date >= from_date,
            )
            .order_by(ClassOccurrence.date)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    # === Roster ===

    async def get_roster_entries(
        self,
        db: AsyncSession,
        occurrence_id: uuid.UUID,
        student_id: uuid.UUID | None = None,
    ) -> list[OccurrenceStudent]:
        """Get roster entries of an occurrence, optionally for one student."""
        query = select(OccurrenceStudent).where(OccurrenceStudent.occurrence_id == occurrence_id)
        if student_id:
            query = query.where(OccurrenceStudent.student_id == student_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_roster(self, db: AsyncSession, occurrence_id: uuid.UUID) -> list[uuid.UUID]:
        """Get the distinct student ids on an occurrence's roster."""
        entries = await self.get_roster_entries(db, occurrence_id)
        return list(dict.fromkeys(entry.student_id for entry in entries))

    async def add_roster_entry(
        self,
        db: AsyncSession,
        occurrence_id: uuid.UUID,
        student_id: uuid.UUID,
        source: str,
    ) -> OccurrenceStudent:
        """Add a roster entry, returning the existing one if already present."""
        for entry in await self.get_roster_entries(db, occurrence_id, student_id):
            if entry.source == source:
                return entry

        entry = OccurrenceStudent(occurrence_id=occurrence_id, student_id=student_id, source=source)
        db.add(entry)
        await db.flush()
        return entry

    async def remove_roster_entry(
        self,
        db: AsyncSession,
        occurrence_id: uuid.UUID,
        student_id: uuid.UUID,
        source: str,
    ) -> bool:
        """Remove one roster entry. Returns whether anything was removed."""
        removed = False
        for entry in await self.get_roster_entries(db, occurrence_id, student_id):
            if entry.source == source:
                await db.delete(entry)
                removed = True
        if removed:
            await db.flush()
        return removed

    async def regenerate_roster(self, db: AsyncSession, occurrence_id: uuid.UUID) -> dict[str, int]:
        """Rebuild the course-sourced part of a roster from active enrollments.

        Direct entries are kept as they are.

        Returns:
            Counts of ``added`` and ``removed`` entries
        """
        occurrence = await self.get_occurrence(db, occurrence_id)

        expected: set[tuple[uuid.UUID, str]] = set()
        if occurrence.template_id:
            courses = await self.course_service.get_courses_for_template(
                db, occurrence.template_id, occurrence.date
            )
            for course in courses:
                query = select(CourseEnrollment).where(
                    CourseEnrollment.course_id == course.id,
                    CourseEnrollment.deleted_at.is_(None),
                    CourseEnrollment.status == EnrollmentStatus.ACTIVE.value,
                )
                for enrollment in (await db.execute(query)).scalars().all():
                    if enrollment.is_active_on(occurrence.date):
                        expected.add((enrollment.student_id, course_source(course.id)))

        current = {
            (entry.student_id, entry.source): entry
            for entry in await self.get_roster_entries(db, occurrence.id)
            if entry.source.startswith("course:")
        }

        removed = 0
        for key, entry in current.items():
            if key not in expected:
                await db.delete(entry)
                removed += 1
        added = 0
        for student_id, source in expected - current.keys():
            db.add(OccurrenceStudent(occurrence_id=occurrence.id, student_id=student_id, source=source))
            added += 1

        await db.flush()
        logger.info(f"Regenerated roster of occurrence {occurrence.id}: {added} added, {removed} removed")
        return {"added": added, "removed": removed}


def get_occurrence_service() -> OccurrenceService:
    """Get occurrence service instance."""
    return OccurrenceService()
