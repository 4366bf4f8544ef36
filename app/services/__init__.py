"""Service layer for business logic."""

from app.services.course_service import CourseService, get_course_service
from app.services.enrollment_service import EnrollmentService, get_enrollment_service
from app.services.import_service import ImportService, get_import_service
from app.services.lookup_service import LookupService, get_lookup_service
from app.services.occurrence_service import OccurrenceService, get_occurrence_service
from app.services.student_service import StudentService, get_student_service
from app.services.template_service import TemplateService, get_template_service

__all__ = [
    "CourseService",
    "get_course_service",
    "EnrollmentService",
    "get_enrollment_service",
    "ImportService",
    "get_import_service",
    "LookupService",
    "get_lookup_service",
    "OccurrenceService",
    "get_occurrence_service",
    "StudentService",
    "get_student_service",
    "TemplateService",
    "get_template_service",
]
