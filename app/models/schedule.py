"""Class template and course models."""

import uuid
from datetime import date

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TenantScopedModel

course_templates = Table(
    "course_templates",
    Base.metadata,
    Column("course_id", Uuid, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("template_id", Uuid, ForeignKey("class_templates.id", ondelete="CASCADE"), primary_key=True),
)


class ClassTemplate(TenantScopedModel):
    """A recurring weekly class slot from which occurrences are generated."""

    __tablename__ = "class_templates"
    __table_args__ = (
        Index(
            "idx_templates_tenant_branch",
            "tenant_id",
            "branch_id",
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    teacher_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("teachers.id", ondelete="SET NULL"),
        nullable=True,
    )
    branch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
    )
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    # 0 = Sunday ... 6 = Saturday
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    courses = relationship(
        "Course",
        secondary=course_templates,
        back_populates="templates",
        lazy="selectin",
    )


class Course(TenantScopedModel):
    """A priced, time-bound program built from one or more class templates."""

    __tablename__ = "courses"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    max_students: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Denormalized weekly slots, derived from the templates at creation time
    schedule: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    auto_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    templates = relationship(
        "ClassTemplate",
        secondary=course_templates,
        back_populates="courses",
        lazy="selectin",
    )

    @property
    def template_ids(self) -> list[uuid.UUID]:
        """Get the ids of the templates this course runs on."""
        return [t.id for t in self.templates]

    def is_running_on(self, day: date) -> bool:
        """Check if the course is active on the given date."""
        return self.is_active and self.start_date <= day <= self.end_date
