"""Course enrollment API endpoints."""

import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.importer.enrollment import EnrollmentSynchronizer
from app.importer.types import EnrollmentTarget, StudentCandidate, StudentOrigin, TargetKind
from app.schemas.common import APIResponse
from app.schemas.enrollment import CourseEnrollRequest, UnenrollResponse
from app.schemas.import_job import EnrollmentReportResponse
from app.services.capabilities import SqlEnrollmentGateway, SqlOccurrenceRoster
from app.services.course_service import get_course_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _synchronizer(db: AsyncSession, effective_date: date | None) -> EnrollmentSynchronizer:
    return EnrollmentSynchronizer(
        SqlEnrollmentGateway(db),
        SqlOccurrenceRoster(db),
        effective_date=effective_date,
        failure_detail_limit=settings.import_failure_detail_limit,
        timeout=settings.import_operation_timeout_seconds,
    )


@router.post("/courses/{course_id}", response_model=APIResponse)
async def enroll_in_course(
    course_id: UUID,
    data: CourseEnrollRequest,
    db: AsyncSession = Depends(get_db),
):
    """Enroll students in a course and in its upcoming classes."""
    course = await get_course_service().get_course(db, course_id)
    target = EnrollmentTarget(kind=TargetKind.COURSE, id=str(course.id), name=course.name)
    students = [
        StudentCandidate(entity_id=str(student_id), origin=StudentOrigin.EXISTING)
        for student_id in dict.fromkeys(data.student_ids)
    ]

    report = await _synchronizer(db, data.effective_date).enroll_bulk([target], students)

    return APIResponse(
        status="success",
        data=EnrollmentReportResponse.from_report(report),
        message=(
            f"{report.successful_enrollments} enrolled, {report.already_enrolled} already enrolled, "
            f"{report.failed} failed"
        ),
    )


@router.delete("/courses/{course_id}/students/{student_id}", response_model=APIResponse)
async def unenroll_from_course(
    course_id: UUID,
    student_id: UUID,
    effective_date: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Take a student out of a course and its classes from a date on."""
    synchronizer = _synchronizer(db, effective_date)
    await synchronizer.unenroll(EnrollmentTarget(kind=TargetKind.COURSE, id=str(course_id)), str(student_id))

    return APIResponse(
        status="success",
        data=UnenrollResponse(
            course_id=course_id,
            student_id=student_id,
            effective_date=synchronizer.effective_date,
        ),
        message="Student un-enrolled",
    )
