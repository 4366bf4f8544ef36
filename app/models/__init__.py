"""SQLAlchemy models for Rosterly."""

from app.models.base import Base, JSONType, SoftDeleteMixin, TenantScopedModel, TimestampMixin
from app.models.tenant import Tenant
from app.models.branch import Branch, Location
from app.models.teacher import Teacher
from app.models.student import Student
from app.models.schedule import ClassTemplate, Course, course_templates
from app.models.occurrence import (
    DIRECT_SOURCE,
    ClassOccurrence,
    OccurrenceStatus,
    OccurrenceStudent,
    course_source,
)
from app.models.enrollment import CourseEnrollment, EnrollmentStatus, PaymentStatus
from app.models.import_job import BulkImportJob, ImportStatus, ImportType

__all__ = [
    # Base
    "Base",
    "JSONType",
    "TenantScopedModel",
    "TimestampMixin",
    "SoftDeleteMixin",
    # Tenant
    "Tenant",
    # Sites
    "Branch",
    "Location",
    # People
    "Teacher",
    "Student",
    # Schedule
    "ClassTemplate",
    "Course",
    "course_templates",
    "ClassOccurrence",
    "OccurrenceStatus",
    "OccurrenceStudent",
    "DIRECT_SOURCE",
    "course_source",
    # Enrollment
    "CourseEnrollment",
    "EnrollmentStatus",
    "PaymentStatus",
    # Import
    "BulkImportJob",
    "ImportType",
    "ImportStatus",
]
