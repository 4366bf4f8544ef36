"""Read-only lists of the reference entities imports resolve against."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Branch, Location, Teacher
from app.utils.tenant_context import get_tenant_id


class LookupService:
    """Branches, locations and teachers of the current tenant."""

    async def get_branches(self, db: AsyncSession) -> list[Branch]:
        tenant_id = get_tenant_id()
        query = (
            select(Branch)
            .where(Branch.tenant_id == tenant_id, Branch.deleted_at.is_(None))
            .order_by(Branch.name)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_locations(
        self,
        db: AsyncSession,
        branch_id: uuid.UUID | None = None,
    ) -> list[Location]:
        tenant_id = get_tenant_id()
        query = select(Location).where(Location.tenant_id == tenant_id, Location.deleted_at.is_(None))
        if branch_id:
            query = query.where(Location.branch_id == branch_id)
        result = await db.execute(query.order_by(Location.name))
        return list(result.scalars().all())

    async def get_teachers(self, db: AsyncSession) -> list[Teacher]:
        tenant_id = get_tenant_id()
        query = (
            select(Teacher)
            .where(Teacher.tenant_id == tenant_id, Teacher.deleted_at.is_(None))
            .order_by(Teacher.first_name, Teacher.last_name)
        )
        result = await db.execute(query)
        return list(result.scalars().all())


def get_lookup_service() -> LookupService:
    """Get lookup service instance."""
    return LookupService()
