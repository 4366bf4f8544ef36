"""Class template service."""

import logging
import uuid
from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundException, ValidationException
from app.models import Branch, ClassTemplate, Location, Teacher
from app.services.course_service import CourseService, get_course_service
from app.utils.ids import parse_optional_uuid
from app.utils.tenant_context import get_tenant_id

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = {
    "name",
    "description",
    "teacher_id",
    "branch_id",
    "location_id",
    "day_of_week",
    "start_time",
    "duration",
    "is_active",
}

# Name given to the single-template course created alongside a new template
AUTO_COURSE_NAME = "רק {name} (*אוטומטי)"
AUTO_COURSE_DAYS = 365


class TemplateService:
    """Service for managing recurring class templates."""

    def __init__(self, course_service: CourseService | None = None):
        self.course_service = course_service or get_course_service()

    async def get_templates(
        self,
        db: AsyncSession,
        is_active: bool | None = True,
        branch_id: uuid.UUID | None = None,
    ) -> list[ClassTemplate]:
        """Get the tenant's templates ordered by weekday and time."""
        tenant_id = get_tenant_id()

        query = select(ClassTemplate).where(
            ClassTemplate.tenant_id == tenant_id,
            ClassTemplate.deleted_at.is_(None),
        )
        if is_active is not None:
            query = query.where(ClassTemplate.is_active == is_active)
        if branch_id:
            query = query.where(ClassTemplate.branch_id == branch_id)

        query = query.order_by(ClassTemplate.day_of_week, ClassTemplate.start_time, ClassTemplate.name)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_template(self, db: AsyncSession, template_id: uuid.UUID) -> ClassTemplate:
        """Get a single template by ID."""
        tenant_id = get_tenant_id()

        query = select(ClassTemplate).where(
            ClassTemplate.id == template_id,
            ClassTemplate.tenant_id == tenant_id,
            ClassTemplate.deleted_at.is_(None),
        )
        template = (await db.execute(query)).scalar_one_or_none()

        if not template:
            raise NotFoundException("Class template")

        return template

    async def create_template(
        self,
        db: AsyncSession,
        data: Mapping[str, Any],
        with_course: bool = True,
    ) -> ClassTemplate:
        """Create a template and, by default, a course that runs only it.

        The course starts today, runs for a year and takes its price from
        ``data["price"]``. Failing to create it does not undo the template.
        """
        tenant_id = get_tenant_id()
        values = await self._clean(db, data)

        template = ClassTemplate(tenant_id=tenant_id, **values)
        db.add(template)
        await db.flush()

        if with_course:
            await self._create_auto_course(db, template, data.get("price"))

        await db.refresh(template)
        return template

    async def update_template(
        self,
        db: AsyncSession,
        template_id: uuid.UUID,
        data: Mapping[str, Any],
    ) -> ClassTemplate:
        """Update a template."""
        template = await self.get_template(db, template_id)
        values = await self._clean(db, data, current=template)

        for field, value in values.items():
            setattr(template, field, value)

        await db.flush()
        await db.refresh(template)

        return template

    async def _create_auto_course(self, db: AsyncSession, template: ClassTemplate, price) -> None:
        start = date.today()
        try:
            async with db.begin_nested():
                await self.course_service.create_course(
                    db,
                    {
                        "name": AUTO_COURSE_NAME.format(name=template.name),
                        "start_date": start,
                        "end_date": start + timedelta(days=AUTO_COURSE_DAYS),
                        "price": price or 0,
                        "auto_created": True,
                        "is_active": True,
                        "template_ids": [template.id],
                    },
                )
        except Exception:
            logger.exception(f"Could not create the automatic course for template {template.id}")

    async def _clean(
        self,
        db: AsyncSession,
        data: Mapping[str, Any],
        current: ClassTemplate | None = None,
    ) -> dict[str, Any]:
        """Keep writable fields and check teacher, branch and location."""
        tenant_id = get_tenant_id()
        values = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}

        for field in ("teacher_id", "branch_id", "location_id"):
            if field in values:
                values[field] = parse_optional_uuid(values[field], field)

        if values.get("teacher_id"):
            await self._require(db, Teacher, values["teacher_id"], tenant_id, "Teacher")
        if values.get("branch_id"):
            await self._require(db, Branch, values["branch_id"], tenant_id, "Branch")
        if values.get("location_id"):
            location = await self._require(db, Location, values["location_id"], tenant_id, "Location")
            branch_id = values.get("branch_id", current.branch_id if current else None)
            if branch_id and location.branch_id != branch_id:
                raise ValidationException(
                    [{"field": "location_id", "message": "Location does not belong to the branch"}]
                )

        day = values.get("day_of_week")
        if day is not None and not 0 <= day <= 6:
            raise ValidationException([{"field": "day_of_week", "message": "Day must be between 0 and 6"}])

        return values

    async def _require(self, db: AsyncSession, model, entity_id: uuid.UUID, tenant_id, name: str):
        query = select(model).where(
            model.id == entity_id,
            model.tenant_id == tenant_id,
            model.deleted_at.is_(None),
        )
        entity = (await db.execute(query)).scalar_one_or_none()
        if entity is None:
            raise NotFoundException(name)
        return entity


def get_template_service() -> TemplateService:
    """Get template service instance."""
    return TemplateService()
