"""Course service: courses are priced date ranges running on class templates."""

import uuid
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundException, ValidationException
from app.models import ClassTemplate, Course, course_templates
from app.utils.ids import parse_uuid
from app.utils.tenant_context import get_tenant_id

WRITABLE_FIELDS = {
    "name",
    "description",
    "start_date",
    "end_date",
    "price",
    "max_students",
    "auto_created",
    "is_active",
}


def build_schedule(templates: Iterable[ClassTemplate]) -> list[dict]:
    """Derive a course's weekly slots from its templates."""
    return [
        {
            "template_id": str(t.id),
            "template_name": t.name,
            "day_of_week": t.day_of_week,
            "start_time": t.start_time,
            "duration": t.duration,
            "teacher_id": str(t.teacher_id) if t.teacher_id else None,
            "branch_id": str(t.branch_id) if t.branch_id else None,
        }
        for t in templates
    ]


class CourseService:
    """Service for managing courses."""

    async def get_courses(
        self,
        db: AsyncSession,
        is_active: bool | None = True,
        search: str | None = None,
    ) -> list[Course]:
        """Get the tenant's courses, newest start date first."""
        tenant_id = get_tenant_id()

        query = select(Course).where(Course.tenant_id == tenant_id, Course.deleted_at.is_(None))
        if is_active is not None:
            query = query.where(Course.is_active == is_active)
        if search:
            query = query.where(Course.name.ilike(f"%{search}%"))

        result = await db.execute(query.order_by(Course.start_date.desc(), Course.name))
        return list(result.scalars().all())

    async def get_course(self, db: AsyncSession, course_id: uuid.UUID) -> Course:
        """Get a single course by ID."""
        tenant_id = get_tenant_id()

        query = select(Course).where(
            Course.id == course_id,
            Course.tenant_id == tenant_id,
            Course.deleted_at.is_(None),
        )
        result = await db.execute(query)
        course = result.scalar_one_or_none()

        if not course:
            raise NotFoundException("Course")

        return course

    async def get_courses_for_template(
        self,
        db: AsyncSession,
        template_id: uuid.UUID,
        on_date: date | None = None,
    ) -> list[Course]:
        """Get the active courses that include a template, optionally running on a date."""
        tenant_id = get_tenant_id()

        query = (
            select(Course)
            .join(course_templates, course_templates.c.course_id == Course.id)
            .where(
                course_templates.c.template_id == template_id,
                Course.tenant_id == tenant_id,
                Course.deleted_at.is_(None),
                Course.is_active.is_(True),
            )
        )
        if on_date is not None:
            query = query.where(Course.start_date <= on_date, Course.end_date >= on_date)

        result = await db.execute(query)
        return list(result.scalars().unique().all())

    async def create_course(self, db: AsyncSession, data: Mapping[str, Any]) -> Course:
        """Create a course; its schedule is derived from ``template_ids``."""
        tenant_id = get_tenant_id()
        values = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
        self._check_dates(values.get("start_date"), values.get("end_date"))

        templates = await self._load_templates(db, data.get("template_ids") or [])

        course = Course(tenant_id=tenant_id, **values)
        course.templates = templates
        course.schedule = build_schedule(templates)

        db.add(course)
        await db.flush()
        await db.refresh(course)

        return course

    async def update_course(
        self,
        db: AsyncSession,
        course_id: uuid.UUID,
        data: Mapping[str, Any],
    ) -> Course:
        """Update a course, rebuilding its schedule when templates change."""
        course = await self.get_course(db, course_id)

        for field, value in data.items():
            if field in WRITABLE_FIELDS:
                setattr(course, field, value)
        self._check_dates(course.start_date, course.end_date)

        if "template_ids" in data:
            templates = await self._load_templates(db, data["template_ids"] or [])
            course.templates = templates
            course.schedule = build_schedule(templates)

        await db.flush()
        await db.refresh(course)

        return course

    @staticmethod
    def _check_dates(start_date: date | None, end_date: date | None) -> None:
        if start_date is None or end_date is None:
            raise ValidationException("A course needs a start date and an end date")
        if end_date < start_date:
            raise ValidationException([{"field": "end_date", "message": "End date is before start date"}])

    async def _load_templates(self, db: AsyncSession, template_ids: Iterable) -> list[ClassTemplate]:
        """Load templates by ID, all of which must belong to the tenant."""
        ids = list(dict.fromkeys(parse_uuid(t, "template_ids") for t in template_ids))
        if not ids:
            return []

        tenant_id = get_tenant_id()
        query = select(ClassTemplate).where(
            ClassTemplate.id.in_(ids),
            ClassTemplate.tenant_id == tenant_id,
            ClassTemplate.deleted_at.is_(None),
        )
        found = {t.id: t for t in (await db.execute(query)).scalars().all()}
        if len(found) != len(ids):
            raise NotFoundException("Class template")
        return [found[i] for i in ids]


def get_course_service() -> CourseService:
    """Get course service instance."""
    return CourseService()
