"""Student reads and writes used by the import store and duplicate detection."""

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundException
from app.models import Branch, Student, Teacher
from app.utils.ids import parse_optional_uuid
from app.utils.tenant_context import get_tenant_id

# Columns an import (or an API client) may write
WRITABLE_FIELDS = {
    "first_name",
    "last_name",
    "phone",
    "birth_date",
    "parent_name",
    "parent_phone",
    "parent_email",
    "address",
    "medical_notes",
    "photo_url",
    "custom_fields",
    "branch_id",
    "teacher_id",
    "imported_at",
    "is_active",
}


class StudentService:
    """Tenant-scoped student records."""

    async def get_all_students(self, db: AsyncSession, is_active: bool | None = None) -> list[Student]:
        """Get every (non-deleted) student of the tenant, unpaginated."""
        tenant_id = get_tenant_id()
        query = select(Student).where(Student.tenant_id == tenant_id, Student.deleted_at.is_(None))
        if is_active is not None:
            query = query.where(Student.is_active == is_active)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_student(
        self,
        db: AsyncSession,
        student_id: uuid.UUID,
    ) -> Student:
        """Get a single student by ID."""
        tenant_id = get_tenant_id()

        query = select(Student).where(
            Student.id == student_id,
            Student.tenant_id == tenant_id,
            Student.deleted_at.is_(None),
        )
        result = await db.execute(query)
        student = result.scalar_one_or_none()

        if not student:
            raise NotFoundException("Student")

        return student

    async def create_student(
        self,
        db: AsyncSession,
        data: Mapping[str, Any],
    ) -> Student:
        """Create a new student from a field dict."""
        tenant_id = get_tenant_id()
        values = await self._clean(db, data)

        student = Student(tenant_id=tenant_id, **values)
        db.add(student)
        await db.flush()
        await db.refresh(student)

        return student

    async def update_student(
        self,
        db: AsyncSession,
        student_id: uuid.UUID,
        data: Mapping[str, Any],
    ) -> Student:
        """Update a student. ``created_at`` is never changed."""
        student = await self.get_student(db, student_id)
        values = await self._clean(db, data)

        for field, value in values.items():
            setattr(student, field, value)

        await db.flush()
        await db.refresh(student)

        return student

    async def _clean(self, db: AsyncSession, data: Mapping[str, Any]) -> dict[str, Any]:
        """Keep writable fields and check referenced rows belong to the tenant."""
        values = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
        if "branch_id" in values:
            values["branch_id"] = parse_optional_uuid(values["branch_id"], "branch_id")
            if values["branch_id"]:
                await self._validate_reference(db, Branch, values["branch_id"], "Branch")
        if "teacher_id" in values:
            values["teacher_id"] = parse_optional_uuid(values["teacher_id"], "teacher_id")
            if values["teacher_id"]:
                await self._validate_reference(db, Teacher, values["teacher_id"], "Teacher")
        return values

    async def _validate_reference(self, db: AsyncSession, model, entity_id: uuid.UUID, name: str) -> None:
        """Validate a referenced row exists in the current tenant."""
        tenant_id = get_tenant_id()
        query = select(model.id).where(
            model.id == entity_id,
            model.tenant_id == tenant_id,
            model.deleted_at.is_(None),
        )
        if (await db.execute(query)).scalar_one_or_none() is None:
            raise NotFoundException(name)


def get_student_service() -> StudentService:
    """Get student service instance."""
    return StudentService()
