"""Course enrollment model with effective date ranges."""

import uuid
from datetime import date
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import TenantScopedModel


class EnrollmentStatus(str, Enum):
    """Status of a course enrollment."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Payment state of an enrollment."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class CourseEnrollment(TenantScopedModel):
    """A student's membership in a course from ``effective_from`` onwards.

    ``effective_to`` is None while the enrollment is open-ended.
    """

    __tablename__ = "course_enrollments"
    __table_args__ = (
        Index("idx_enrollments_course_student", "course_id", "student_id", "status"),
    )

    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EnrollmentStatus.ACTIVE.value,
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )
    amount_paid: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=False, default=0
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_active_on(self, day: date) -> bool:
        """Check if the enrollment covers the given date."""
        if self.status == EnrollmentStatus.CANCELLED.value:
            return False
        if day < self.effective_from:
            return False
        if self.effective_to is not None and day > self.effective_to:
            return False
        return True
