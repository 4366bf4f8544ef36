"""Student model."""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import JSONType, TenantScopedModel


class Student(TenantScopedModel):
    """Student entity with contact and profile data."""

    __tablename__ = "students"
    __table_args__ = (
        Index(
            "idx_students_tenant_phone",
            "tenant_id",
            "phone",
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    parent_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    parent_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    parent_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    medical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    custom_fields: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    branch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
    )
    teacher_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("teachers.id", ondelete="SET NULL"),
        nullable=True,
    )
    imported_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        """Get the student's full name."""
        return f"{self.first_name} {self.last_name}".strip()
