"""Generated class occurrence model and its roster."""

import uuid
from datetime import date as date_type
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from uuid_extensions import uuid7

from app.models.base import Base, TenantScopedModel, TimestampMixin

DIRECT_SOURCE = "direct"


def course_source(course_id) -> str:
    """Get the roster source tag for entries propagated from a course."""
    return f"course:{course_id}"


class OccurrenceStatus(str, Enum):
    """Lifecycle of a single dated class."""

    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ClassOccurrence(TenantScopedModel):
    """One dated instance of a class template."""

    __tablename__ = "class_occurrences"
    __table_args__ = (
        Index("idx_occurrences_template_date", "template_id", "date"),
    )

    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("class_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    teacher_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("teachers.id", ondelete="SET NULL"),
        nullable=True,
    )
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OccurrenceStatus.SCHEDULED.value,
    )
    is_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    roster = relationship(
        "OccurrenceStudent",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def student_ids(self) -> list[uuid.UUID]:
        """Get the distinct ids of the students on this occurrence's roster."""
        return list(dict.fromkeys(entry.student_id for entry in self.roster))

    @property
    def display_name(self) -> str:
        """Get a human readable label (name, date and time)."""
        when = self.date.strftime("%d/%m/%Y")
        return f"{self.name} - {when} {self.start_time or ''}".strip()


class OccurrenceStudent(Base, TimestampMixin):
    """Roster entry linking a student to a single occurrence.

    A student may hold several entries for the same occurrence, one per
    source (``direct`` or ``course:<id>``). They stay on the roster while at
    least one entry remains.
    """

    __tablename__ = "occurrence_students"
    __table_args__ = (
        UniqueConstraint(
            "occurrence_id", "student_id", "source", name="uq_occurrence_student_source"
        ),
        Index("idx_occurrence_students_student", "student_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid7,
    )
    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("class_occurrences.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(String(80), nullable=False, default=DIRECT_SOURCE)

    occurrence = relationship("ClassOccurrence", back_populates="roster", lazy="selectin")
