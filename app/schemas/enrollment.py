"""Enrollment management schemas."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field


class CourseEnrollRequest(BaseModel):
    """Students to enroll in a course from a date (today when omitted)."""

    student_ids: list[UUID] = Field(..., min_length=1)
    effective_date: date | None = None


class UnenrollResponse(BaseModel):
    course_id: UUID
    student_id: UUID
    effective_date: date
