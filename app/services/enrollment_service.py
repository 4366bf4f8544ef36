"""Enrollment service: course enrollments with effective dates, and direct class enrollments."""

import logging
import uuid
from datetime import date, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AlreadyEnrolledError, NotFoundException
from app.models import DIRECT_SOURCE, CourseEnrollment, EnrollmentStatus
from app.services.course_service import CourseService, get_course_service
from app.services.occurrence_service import OccurrenceService, get_occurrence_service
from app.services.student_service import StudentService, get_student_service
from app.utils.tenant_context import get_tenant_id

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Service for enrolling students in courses and single occurrences."""

    def __init__(
        self,
        course_service: CourseService | None = None,
        occurrence_service: OccurrenceService | None = None,
        student_service: StudentService | None = None,
    ):
        self.course_service = course_service or get_course_service()
        self.occurrence_service = occurrence_service or get_occurrence_service()
        self.student_service = student_service or get_student_service()

    async def get_active_enrollment(
        self,
        db: AsyncSession,
        course_id: uuid.UUID,
        student_id: uuid.UUID,
        on_date: date | None = None,
    ) -> CourseEnrollment | None:
        """Get the student's enrollment in a course that is still open on a date."""
        tenant_id = get_tenant_id()
        on_date = on_date or date.today()

        query = select(CourseEnrollment).where(
            CourseEnrollment.tenant_id == tenant_id,
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.student_id == student_id,
            CourseEnrollment.deleted_at.is_(None),
            CourseEnrollment.status == EnrollmentStatus.ACTIVE.value,
            or_(CourseEnrollment.effective_to.is_(None), CourseEnrollment.effective_to >= on_date),
        )
        result = await db.execute(query.order_by(CourseEnrollment.effective_from.desc()))
        return result.scalars().first()

    async def get_course_enrollments(
        self,
        db: AsyncSession,
        course_id: uuid.UUID,
        as_of: date | None = None,
    ) -> list[CourseEnrollment]:
        """Get the enrollments of a course, limited to those active on ``as_of`` when given."""
        tenant_id = get_tenant_id()

        query = select(CourseEnrollment).where(
            CourseEnrollment.tenant_id == tenant_id,
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.deleted_at.is_(None),
        )
        enrollments = list((await db.execute(query)).scalars().all())
        if as_of is not None:
            enrollments = [e for e in enrollments if e.is_active_on(as_of)]
        return enrollments

    async def enroll_in_course(
        self,
        db: AsyncSession,
        course_id: uuid.UUID,
        student_id: uuid.UUID,
        effective_from: date,
    ) -> CourseEnrollment:
        """Enroll a student in a course from a date.

        Raises:
            AlreadyEnrolledError: If an enrollment is already open on that date
        """
        tenant_id = get_tenant_id()
        course = await self.course_service.get_course(db, course_id)
        await self.student_service.get_student(db, student_id)

        if await self.get_active_enrollment(db, course.id, student_id, effective_from):
            raise AlreadyEnrolledError(f"course {course.name}", str(student_id))

        enrollment = CourseEnrollment(
            tenant_id=tenant_id,
            course_id=course.id,
            student_id=student_id,
            effective_from=effective_from,
            status=EnrollmentStatus.ACTIVE.value,
        )
        db.add(enrollment)
        await db.flush()
        await db.refresh(enrollment)

        logger.info(f"Enrolled student {student_id} in course {course.id} from {effective_from}")
        return enrollment

    async def unenroll_from_course(
        self,
        db: AsyncSession,
        course_id: uuid.UUID,
        student_id: uuid.UUID,
        effective_date: date,
    ) -> CourseEnrollment:
        """End an enrollment so the student no longer attends from ``effective_date`` on.

        An enrollment that would end before it started is cancelled instead.
        """
        enrollment = await self.get_active_enrollment(db, course_id, student_id, effective_date)
        if not enrollment:
            raise NotFoundException("Enrollment")

        enrollment.effective_to = effective_date - timedelta(days=1)
        if enrollment.effective_to < enrollment.effective_from:
            enrollment.status = EnrollmentStatus.CANCELLED.value

        await db.flush()
        await db.refresh(enrollment)

        logger.info(f"Un-enrolled student {student_id} from course {course_id} as of {effective_date}")
        return enrollment

    async def enroll_in_occurrence(
        self,
        db: AsyncSession,
        occurrence_id: uuid.UUID,
        student_id: uuid.UUID,
    ) -> None:
        """Add a student directly to one occurrence's roster.

        Raises:
            AlreadyEnrolledError: If the student is on the roster already, by any source
        """
        occurrence = await self.occurrence_service.get_occurrence(db, occurrence_id)
        await self.student_service.get_student(db, student_id)

        if await self.occurrence_service.get_roster_entries(db, occurrence.id, student_id):
            raise AlreadyEnrolledError(f"class {occurrence.display_name}", str(student_id))

        await self.occurrence_service.add_roster_entry(db, occurrence.id, student_id, DIRECT_SOURCE)

    async def unenroll_from_occurrence(
        self,
        db: AsyncSession,
        occurrence_id: uuid.UUID,
        student_id: uuid.UUID,
    ) -> None:
        """Remove a student's direct entry from one occurrence's roster."""
        occurrence = await self.occurrence_service.get_occurrence(db, occurrence_id)
        removed = await self.occurrence_service.remove_roster_entry(
            db, occurrence.id, student_id, DIRECT_SOURCE
        )
        if not removed:
            raise NotFoundException("Roster entry")


def get_enrollment_service() -> EnrollmentService:
    """Get enrollment service instance."""
    return EnrollmentService()
