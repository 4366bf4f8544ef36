"""Database-backed implementations of the import engine's capabilities.

Every adapter is bound to one request's AsyncSession and scopes its queries
to the tenant in the request context.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundException
from app.importer.capabilities import ImportCapabilities
from app.importer.types import EnrollmentTarget, TargetKind
from app.services.course_service import CourseService, get_course_service
from app.services.enrollment_service import EnrollmentService, get_enrollment_service
from app.services.lookup_service import LookupService, get_lookup_service
from app.services.occurrence_service import OccurrenceService, get_occurrence_service
from app.services.student_service import StudentService, get_student_service
from app.services.template_service import TemplateService, get_template_service
from app.utils.ids import parse_uuid
from app.utils.tenant_context import require_tenant

logger = logging.getLogger(__name__)

Loader = Callable[[AsyncSession], Awaitable[list]]
Searcher = Callable[[AsyncSession, str], Awaitable[list]]


def occurrence_record(occurrence) -> dict[str, Any]:
    record = occurrence.to_dict()
    record["display_name"] = occurrence.display_name
    return record


class SqlLookupSource:
    """Lists one kind of entity as plain dicts."""

    def __init__(self, db: AsyncSession, loader: Loader, to_record=None):
        self.db = db
        self.loader = loader
        self.to_record = to_record or (lambda entity: entity.to_dict())

    async def list_all(self, tenant_id: str) -> list[Mapping[str, Any]]:
        require_tenant(tenant_id)
        return [self.to_record(entity) for entity in await self.loader(self.db)]


class SqlSearchableLookupSource(SqlLookupSource):
    """A lookup source that also answers name searches."""

    def __init__(self, db: AsyncSession, loader: Loader, searcher: Searcher, to_record=None):
        super().__init__(db, loader, to_record)
        self.searcher = searcher

    async def search(self, tenant_id: str, term: str) -> list[Mapping[str, Any]]:
        require_tenant(tenant_id)
        return [self.to_record(entity) for entity in await self.searcher(self.db, term)]


def build_lookup_sources(
    db: AsyncSession,
    lookup_service: LookupService | None = None,
    course_service: CourseService | None = None,
    template_service: TemplateService | None = None,
    occurrence_service: OccurrenceService | None = None,
) -> dict[str, SqlLookupSource]:
    lookups = lookup_service or get_lookup_service()
    courses = course_service or get_course_service()
    templates = template_service or get_template_service()
    occurrences = occurrence_service or get_occurrence_service()

    return {
        "branches": SqlLookupSource(db, lookups.get_branches),
        "locations": SqlLookupSource(db, lookups.get_locations),
        "teachers": SqlLookupSource(db, lookups.get_teachers),
        "courses": SqlLookupSource(db, courses.get_courses),
        "templates": SqlLookupSource(db, templates.get_templates),
        "occurrences": SqlSearchableLookupSource(
            db,
            lambda session: occurrences.get_occurrences(session, from_date=date.today()),
            occurrences.search_occurrences,
            occurrence_record,
        ),
    }


class SqlRecordStore:
    """Creates and updates students, courses and templates for the import executor.

    Each write runs in a savepoint so one failing row does not poison the
    rest of the transaction.
    """

    def __init__(
        self,
        db: AsyncSession,
        student_service: StudentService | None = None,
        course_service: CourseService | None = None,
        template_service: TemplateService | None = None,
    ):
        self.db = db
        students = student_service or get_student_service()
        courses = course_service or get_course_service()
        templates = template_service or get_template_service()

        self._handlers = {
            "students": (
                students.get_all_students,
                students.get_student,
                students.create_student,
                students.update_student,
            ),
            "courses": (
                lambda session: courses.get_courses(session, is_active=None),
                courses.get_course,
                courses.create_course,
                courses.update_course,
            ),
            "templates": (
                lambda session: templates.get_templates(session, is_active=None),
                templates.get_template,
                templates.create_template,
                templates.update_template,
            ),
        }

    def _handler(self, kind: str):
        handler = self._handlers.get(kind)
        if handler is None:
            raise NotFoundException(f"Record kind '{kind}'")
        return handler

    async def create(self, kind: str, data: Mapping[str, Any]) -> str:
        _, _, create, _ = self._handler(kind)
        async with self.db.begin_nested():
            entity = await create(self.db, data)
        return str(entity.id)

    async def update(self, kind: str, entity_id: str, data: Mapping[str, Any]) -> None:
        _, _, _, update = self._handler(kind)
        async with self.db.begin_nested():
            await update(self.db, parse_uuid(entity_id), data)

    async def exists(self, kind: str, entity_id: str) -> bool:
        _, get_one, _, _ = self._handler(kind)
        try:
            await get_one(self.db, parse_uuid(entity_id))
        except NotFoundException:
            return False
        return True

    async def query(self, kind: str, predicate=None) -> list[Mapping[str, Any]]:
        get_all, _, _, _ = self._handler(kind)
        records = [entity.to_dict() for entity in await get_all(self.db)]
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return records


class SqlEnrollmentGateway:
    """Course and single-class enrollment over the enrollment service."""

    def __init__(self, db: AsyncSession, enrollment_service: EnrollmentService | None = None):
        self.db = db
        self.enrollments = enrollment_service or get_enrollment_service()

    async def enroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        async with self.db.begin_nested():
            if target.kind == TargetKind.COURSE:
                await self.enrollments.enroll_in_course(
                    self.db, parse_uuid(target.id), parse_uuid(student_id), effective_date
                )
            else:
                await self.enrollments.enroll_in_occurrence(
                    self.db, parse_uuid(target.id), parse_uuid(student_id)
                )

    async def unenroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        async with self.db.begin_nested():
            if target.kind == TargetKind.COURSE:
                await self.enrollments.unenroll_from_course(
                    self.db, parse_uuid(target.id), parse_uuid(student_id), effective_date
                )
            else:
                await self.enrollments.unenroll_from_occurrence(
                    self.db, parse_uuid(target.id), parse_uuid(student_id)
                )

    async def list_active_enrollments(self, target: EnrollmentTarget, as_of: date) -> list[str]:
        if target.kind == TargetKind.COURSE:
            enrollments = await self.enrollments.get_course_enrollments(self.db, parse_uuid(target.id), as_of)
            return [str(e.student_id) for e in enrollments]
        roster = await self.enrollments.occurrence_service.get_roster(self.db, parse_uuid(target.id))
        return [str(student_id) for student_id in roster]


class SqlOccurrenceRoster:
    """Occurrence rosters over the occurrence service."""

    def __init__(
        self,
        db: AsyncSession,
        occurrence_service: OccurrenceService | None = None,
        course_service: CourseService | None = None,
    ):
        self.db = db
        self.occurrences = occurrence_service or get_occurrence_service()
        self.courses = course_service or get_course_service()

    async def course_template_ids(self, course_id: str) -> list[str]:
        course = await self.courses.get_course(self.db, parse_uuid(course_id))
        return [str(template_id) for template_id in course.template_ids]

    async def future_occurrence_ids(self, template_id: str, from_date: date) -> list[str]:
        occurrences = await self.occurrences.get_future_occurrences(self.db, parse_uuid(template_id), from_date)
        return [str(o.id) for o in occurrences]

    async def roster_sources(self, occurrence_id: str, student_id: str) -> set[str]:
        entries = await self.occurrences.get_roster_entries(
            self.db, parse_uuid(occurrence_id), parse_uuid(student_id)
        )
        return {entry.source for entry in entries}

    async def add_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        await self.occurrences.add_roster_entry(
            self.db, parse_uuid(occurrence_id), parse_uuid(student_id), source
        )

    async def remove_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        await self.occurrences.remove_roster_entry(
            self.db, parse_uuid(occurrence_id), parse_uuid(student_id), source
        )


def build_capabilities(db: AsyncSession) -> ImportCapabilities:
    """Bind the full set of import capabilities to a database session."""
    return ImportCapabilities(
        store=SqlRecordStore(db),
        lookups=build_lookup_sources(db),
        enrollments=SqlEnrollmentGateway(db),
        roster=SqlOccurrenceRoster(db),
    )
